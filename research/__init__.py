# research/__init__.py
from .client import DeepResearchClient
from .errors import (DeepResearchError, ExternalServiceError,
                     IncompleteResponseError, RateLimitExceeded,
                     RequestValidationError, SecurityRejection)
from .handler import ResearchRequestHandler
from .models import ResearchRequest, ResearchResponse, ValidationResult
from .rate_limiter import ResearchRateLimiter
from .validation import RequestValidator
