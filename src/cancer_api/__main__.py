"""Allow running the service with ``python -m cancer_api``."""

from .app import main

main()
