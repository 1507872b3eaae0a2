# Core module: configuration, errors, structured logging, database handles
#
# Example:
#   from plaid_api.core.config import load_config
#   from plaid_api.core.logger import create_logger
