"""Allow ``python -m scrapestack``."""

from scrapestack.cli import main

main()
