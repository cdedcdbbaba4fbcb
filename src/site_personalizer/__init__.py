"""Site Personalizer: batch website crawl, summary and personalization pipeline."""

__version__ = "0.1.0"
