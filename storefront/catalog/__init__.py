"""
Catalog package for the storefront.

Holds the book schemas, the in-memory catalogue with its filters and the
gateway to the external book-service backend. The catalogue is loaded
from the backend on first use and reloaded after every accepted order so
visitors see current availability.
"""
