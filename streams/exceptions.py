"""
Error taxonomy for the stream lifecycle.

Each error is a DRF APIException so it carries its HTTP status and a
human-readable detail; views render them as {"success": false, "message"}.
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidJob(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid stream job."
    default_code = "invalid_job"


class StreamKeyInUse(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Stream key is already in use. Use another key or stop the running stream."
    default_code = "stream_key_in_use"


class SpawnError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Encoder process could not be started."
    default_code = "spawn_error"


class EncoderCrashed(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Encoder process exited abnormally."
    default_code = "encoder_crashed"


class JobNotFound(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Stream not found."
    default_code = "job_not_found"


class PersistenceError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Job store is unavailable."
    default_code = "persistence_error"
