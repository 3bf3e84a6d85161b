"""Basic sqla-tablemapper usage examples.

Demonstrates mapper setup, single-query joins, batched merges, counting
for pagination and the async bridge.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from sqla_tablemapper import MapperSettings, Query, QueryCount, QueryMerge, TableMapper

from .models import Author, Post, Tag, metadata


# ── 1. One mapper per database ──────────────────────────────────────

engine = sa.create_engine("sqlite:///blog.db")
mapper = TableMapper(engine, settings=MapperSettings(in_clause_chunk_size=500))

# mapping and SQL generation report through the standard logging module
logging.getLogger("sqla_tablemapper").setLevel(logging.DEBUG)


def setup() -> None:
    metadata.create_all(engine)


# ── 2. Records alone ────────────────────────────────────────────────


def get_authors() -> list[Author]:
    return Query(Author).order_by("authors.name").execute(mapper)


def get_recent_posts(limit: int = 10) -> list[Post]:
    return (
        Query(Post)
        .order_by("posts.published_on DESC")
        .limit_offset_clause(f"LIMIT {int(limit)}")
        .execute(mapper)
    )


# ── 3. has_one: the join column lives on the owner ──────────────────


def get_posts_with_author(title_prefix: str) -> list[Post]:
    return (
        Query(Post)
        .has_one(Author)
        .join_column_owning_side("written_by")
        .populate_property("author")
        .where("posts.title LIKE :prefix", prefix=f"{title_prefix}%")
        .order_by("posts.id")
        .execute(mapper)
    )


# ── 4. has_many: the join column lives on the related table ─────────


def get_authors_with_posts() -> list[Author]:
    return (
        Query(Author)
        .has_many(Post)
        .join_column_many_side("written_by")
        .populate_property("posts")
        .order_by("authors.id, posts.published_on")
        .execute(mapper)
    )


# ── 5. has_many through an association table ───────────────────────


def get_posts_with_tags() -> list[Post]:
    return (
        Query(Post)
        .has_many(Tag)
        .through_join_table("post_tags")
        .through_join_columns("post_id", "tag_id")
        .populate_property("tags")
        .order_by("posts.id, tags.label")
        .execute(mapper)
    )


# ── 6. Pagination: limit the owners, then merge the collections ─────


def get_page(page: int, size: int = 20) -> tuple[int, list[Post]]:
    total = QueryCount(Post).execute(mapper)
    posts = (
        Query(Post)
        .has_one(Author)
        .join_column_owning_side("written_by")
        .populate_property("author")
        .order_by("posts.id")
        .limit_offset_clause(f"LIMIT {int(size)} OFFSET {int(page) * int(size)}")
        .execute(mapper)
    )
    (
        QueryMerge(Post)
        .has_many(Tag)
        .through_join_table("post_tags")
        .through_join_columns("post_id", "tag_id")
        .populate_property("tags")
        .order_by("tags.label")
        .execute(mapper, posts)
    )
    return total, posts


def count_posts_by(author_name: str) -> int:
    return (
        QueryCount(Post, "p")
        .belongs_to(Author, "a")
        .join_column_owning_side("written_by")
        .where("a.name = :name", name=author_name)
        .execute(mapper)
    )


# ── 7. asyncio: run the queries on the sync side of a connection ────

async_engine = create_async_engine("sqlite+aiosqlite:///blog.db")


async def get_authors_async() -> list[Author]:
    async with async_engine.connect() as conn:
        return await conn.run_sync(_authors_with_posts)


def _authors_with_posts(connection: sa.Connection) -> list[Author]:
    # a mapper bound to a Connection runs inside the caller's transaction;
    # it has its own caches, so keep one per long-lived connection
    return (
        Query(Author)
        .has_many(Post)
        .join_column_many_side("written_by")
        .populate_property("posts")
        .execute(TableMapper(connection))
    )


async def merge_tags_async(conn: AsyncConnection, posts: list[Post]) -> None:
    merge = (
        QueryMerge(Post)
        .has_many(Tag)
        .through_join_table("post_tags")
        .through_join_columns("post_id", "tag_id")
        .populate_property("tags")
    )
    await conn.run_sync(lambda sync_conn: merge.execute(TableMapper(sync_conn), posts))
