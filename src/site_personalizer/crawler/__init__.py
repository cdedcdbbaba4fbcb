"""Website crawling: provider client, text cleaning and the content cache."""
