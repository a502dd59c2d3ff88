from django.urls import path
from .views import (
    ActiveStreamListView,
    CancelScheduleView,
    HistoryDetailView,
    HistoryListView,
    ScheduledStreamListView,
    StartStreamView,
    StopStreamView,
    StreamListView,
    StreamStatusView,
)

urlpatterns = [
    path("streams/", StreamListView.as_view(), name="stream_list"),
    path("streams/start/", StartStreamView.as_view(), name="stream_start"),
    path("streams/stop/", StopStreamView.as_view(), name="stream_stop"),
    path("streams/active/", ActiveStreamListView.as_view(), name="stream_active"),
    path("streams/scheduled/", ScheduledStreamListView.as_view(), name="stream_scheduled"),
    path("streams/history/", HistoryListView.as_view(), name="stream_history"),
    path("streams/history/<uuid:record_id>/", HistoryDetailView.as_view(), name="stream_history_detail"),
    path("streams/<str:stream_key>/cancel-schedule/", CancelScheduleView.as_view(), name="stream_cancel_schedule"),
    path("streams/<str:stream_key>/status/", StreamStatusView.as_view(), name="stream_status"),
]
