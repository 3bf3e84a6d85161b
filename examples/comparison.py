"""Before/after comparison: hand-written SQL vs the query builders.

Shows the same author -> posts -> tags graph assembled from a hand-written
join with SelectMapper / ResultExtractor, and with Query plus QueryMerge.
"""

from __future__ import annotations

import sqlalchemy as sa

from sqla_tablemapper import Query, QueryMerge, ResultExtractor, TableMapper

from .models import Author, Post, Tag


# hand-written: one query, every column spelled out by the select mappers


def get_authors_raw(engine: sa.Engine, mapper: TableMapper) -> list[Author]:
    a = mapper.get_select_mapper(Author, "a")
    p = mapper.get_select_mapper(Post, "p")
    t = mapper.get_select_mapper(Tag, "t")
    sql = (
        f"SELECT {a.columns_sql()}, {p.columns_sql()}, {t.columns_sql()} "
        "FROM authors a "
        "LEFT JOIN posts p ON p.written_by = a.id "
        "LEFT JOIN post_tags pt ON pt.post_id = p.id "
        "LEFT JOIN tags t ON t.id = pt.tag_id "
        "ORDER BY a.id, p.id, t.label"
    )
    statement = sa.text(sql).columns(*a.typed_columns(), *p.typed_columns(), *t.typed_columns())
    extractor = (
        ResultExtractor(Author, a, p, t)
        .has_many(Author, Post, "posts")
        .has_many(Post, Tag, "tags")
    )
    with engine.connect() as conn:
        return extractor.extract(conn.execute(statement))


# builders: one join for the first level, one batched IN query per chunk for the second


def get_authors(mapper: TableMapper) -> list[Author]:
    authors = (
        Query(Author)
        .has_many(Post)
        .join_column_many_side("written_by")
        .populate_property("posts")
        .order_by("authors.id, posts.id")
        .execute(mapper)
    )
    posts = [post for author in authors for post in author.posts]
    (
        QueryMerge(Post)
        .has_many(Tag)
        .through_join_table("post_tags")
        .through_join_columns("post_id", "tag_id")
        .populate_property("tags")
        .order_by("tags.label")
        .execute(mapper, posts)
    )
    return authors
