"""Critical and deferred CSS generation for Vite builds of multi-site CMS projects."""

__version__ = "1.0.0"
