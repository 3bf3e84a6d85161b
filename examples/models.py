"""Minimal records for sqla-tablemapper examples."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field

import sqlalchemy as sa

from sqla_tablemapper import column


# the schema itself is owned by whatever creates it (migrations, DDL scripts, ...);
# it is spelled out here only so the examples can create it

metadata = sa.MetaData()

sa.Table(
    "authors",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("name", sa.String(100), nullable=False),
)
sa.Table(
    "posts",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("written_by", sa.Integer, sa.ForeignKey("authors.id")),
    sa.Column("published_on", sa.DateTime),
    sa.Column("revision", sa.Integer, nullable=False, default=1),
)
sa.Table(
    "tags",
    metadata,
    sa.Column("id", sa.Integer, primary_key=True),
    sa.Column("label", sa.String(50), nullable=False),
)
sa.Table(
    "post_tags",
    metadata,
    sa.Column("post_id", sa.Integer, sa.ForeignKey("posts.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tags.id"), primary_key=True),
)


@dataclass
class Author:
    __tablename__ = "authors"

    id: int | None = column(id=True)
    name: str | None = column()

    posts: list[Post] = field(default_factory=list)


@dataclass
class Post:
    __tablename__ = "posts"

    id: int | None = column(id=True)
    title: str | None = column()
    author_id: int | None = column("written_by")
    published_on: datetime.datetime | None = column(created_on=True)
    revision: int | None = column(version=True)

    author: Author | None = None
    tags: list[Tag] = field(default_factory=list)


@dataclass
class Tag:
    __tablename__ = "tags"

    id: int | None = column(id=True)
    label: str | None = column()
