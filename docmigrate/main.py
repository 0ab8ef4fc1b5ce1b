from docmigrate.api.main import app

__all__ = ["app"]
