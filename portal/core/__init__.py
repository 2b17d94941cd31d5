"""Catalog navigation, solution resolution and image viewing."""

from .errors import CatalogFetchError, InvalidTransitionError, PortalError
from .navigation import Level, LoadStatus, NavigationController, SelectionOutcome
from .preload import ImagePreloadCache, storage_image_loader
from .resolver import Resolution, SolutionResolver, flatten_solution_sets
from .viewer import GalleryViewer, Key, KeyboardRouter, LightboxViewer, PageChrome

__all__ = [
    "CatalogFetchError",
    "GalleryViewer",
    "ImagePreloadCache",
    "InvalidTransitionError",
    "Key",
    "KeyboardRouter",
    "Level",
    "LightboxViewer",
    "LoadStatus",
    "NavigationController",
    "PageChrome",
    "PortalError",
    "Resolution",
    "SelectionOutcome",
    "SolutionResolver",
    "flatten_solution_sets",
    "storage_image_loader",
]
