# ABOUTME: Package initialization for mailhub email conversation import
# ABOUTME: Defines version and sets up package-level logging configuration
"""mailhub - Email conversation threading for a customer-operations hub"""

__version__ = "0.1.0"

# Set up logging for the package
import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())
