"""Centralized brand configuration for user-facing copy."""

BRAND_NAME = "Assessments"
BRAND_DOMAIN = "assessments.example.com"
BRAND_APP_DESCRIPTION = "Assessment execution core: credits, attempts, code execution and proctoring"


def brand_email_from() -> str:
    return f"{BRAND_NAME} <noreply@{BRAND_DOMAIN}>"
