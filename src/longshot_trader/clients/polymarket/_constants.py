"""HTTP status constants shared by the Polymarket client modules."""

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_ERROR = 500
TRANSPORT_ERROR = 0
