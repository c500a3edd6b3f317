"""
Shared module for cross-cutting concerns of the signal relay.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging and audit helpers

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger, setup_logging
"""
