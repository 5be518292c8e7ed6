"""Import Pixeldrain zip archives into a Navidrome music library: options, glob pruning, progress and the import runner."""

__version__ = "0.1.0"