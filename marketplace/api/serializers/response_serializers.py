"""
Response Serializers for Marketplace API Documentation

These serializers define the structure of API responses for OpenAPI schema generation.
They are NOT used for data validation, only for documentation in Swagger/ReDoc.
"""

from rest_framework import serializers


class ErrorResponseSerializer(serializers.Serializer):
    """Standard error response"""

    error = serializers.CharField(help_text="Error code identifier")
    detail = serializers.CharField(help_text="Human-readable error message")
    errors = serializers.ListField(child=serializers.CharField(), required=False, help_text="Field-level messages")
