__version__ = "1.0.0"
__build_type__ = "source"
