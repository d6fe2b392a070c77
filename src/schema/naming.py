"""Model and collection naming derived from a schema file's location.

The model name comes from the file name, the collection name from the
directory the file lives in:

    schemas/Person.json                            Person      entities
    schemas/Person/Author.json                     Author      people
    schemas/CreativeWork/Article.json              Article     creativeWorks
    schemas/CreativeWork/Article/NewsArticle.json  NewsArticle articles

Schemas at the root of the schema directory share the default collection
so they can be searched together. Grouping by sub-directory keeps entity
types apart in storage.
"""
import os
from pathlib import Path
from typing import Union

import inflection

PathLike = Union[str, os.PathLike]


def model_name_for(path: PathLike) -> str:
    """Return the PascalCase model name for a schema file.

    Example:
        >>> model_name_for("schemas/creative-work/news-article.json")
        'NewsArticle'
    """
    stem = Path(path).stem
    return inflection.camelize(inflection.underscore(stem.replace(" ", "_")))


def collection_name_for(path: PathLike, schema_root: PathLike, default_collection: str) -> str:
    """Return the collection name for a schema file.

    Args:
        path: Path of the schema file
        schema_root: Root of the schema directory tree
        default_collection: Collection used for files directly under the root

    Returns:
        The default collection for root-level files, otherwise the camelCased
        English plural of the immediate parent directory name
    """
    parent = Path(path).resolve().parent
    if parent == Path(schema_root).resolve():
        return default_collection

    plural = inflection.pluralize(parent.name)
    # underscore() first so "CreativeWorks" and "creative-works" both end up "creativeWorks"
    return inflection.camelize(inflection.underscore(plural.replace(" ", "_")), False)
