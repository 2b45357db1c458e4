"""Database fixtures for BerryRecord tests (shared)."""

import pytest
from sqlalchemy.orm import Session

from .models import User, Profile, Post, Comment, Tag, PostTag


def create_sample_data(engine):
    """Insert the sample graph used across the integration tests.

    Users: Alice (2 posts, profile), Bob (1 post), Carol (no posts).
    Post 1 has three comments (one pending), post 2 is a draft without
    comments, post 3 has one comment. Tags: post 1 -> python, sql;
    post 3 -> sql.
    """
    with Session(engine) as session:
        session.add_all([
            User(id=1, name='Alice', email='alice@example.com', status=1),
            User(id=2, name='Bob', email='bob@example.com', status=1),
            User(id=3, name='Carol', email=None, status=0),
        ])
        session.flush()
        session.add(Profile(id=1, user_id=1, bio='Alice writes about databases'))
        session.add_all([
            Post(id=1, author_id=1, title='First Post', body='Hello world!', status=1, views=10),
            Post(id=2, author_id=1, title='Draft Post', body='Work in progress', status=0, views=5),
            Post(id=3, author_id=2, title='Bob Post', body='Hi there', status=1, views=20),
        ])
        session.flush()
        session.add_all([
            Comment(id=1, post_id=1, author_id=2, body='Nice', status=1),
            Comment(id=2, post_id=1, author_id=3, body='Great', status=1),
            Comment(id=3, post_id=1, author_id=2, body='Spam', status=0),
            Comment(id=4, post_id=3, author_id=1, body='Hi Bob', status=1),
        ])
        session.add_all([
            Tag(id=1, name='python'),
            Tag(id=2, name='sql'),
            Tag(id=3, name='orm'),
        ])
        session.flush()
        session.add_all([
            PostTag(post_id=1, tag_id=1),
            PostTag(post_id=1, tag_id=2),
            PostTag(post_id=3, tag_id=2),
        ])
        session.commit()


@pytest.fixture(scope="function")
def populated_db(db, engine):
    create_sample_data(engine)
    return db
