"""Unit tests for auth/serializers.py -- DatabaseLocator and OrmLocator.

Covers:
- find_by_uid / find_by_id return the record or raise UserNotFound
- validate_credentials delegates to the hasher
- query() constrains lookups on a copy without touching the original
- reflected tables and mapped models both work; bad column config fails fast
"""

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table

from auth.errors import ConfigurationError, StorageError, UserNotFound
from auth.models import UserRecord
from auth.serializers import DatabaseLocator, OrmLocator, build_locator
from tests.conftest import EMAIL, PASSWORD, Account


@pytest.fixture
def db_locator(engine, hasher, user_id):
    return DatabaseLocator(engine, hasher, table="users")


@pytest.fixture
def orm_locator(engine, hasher):
    from sqlalchemy.orm import Session

    with Session(engine) as session:
        session.add(Account(login="bob", password_hash=hasher.hash("hunter2"), is_active=1))
        session.add(Account(login="carol", password_hash=hasher.hash("hunter3"), is_active=0))
        session.commit()
    return OrmLocator(engine, hasher, model=Account, uid="login", password="password_hash")  # noqa: S106


class TestDatabaseLocator:
    def test_find_by_uid(self, db_locator, user_id):
        user = db_locator.find_by_uid(EMAIL)
        assert isinstance(user, UserRecord)
        assert user.id == user_id
        assert user.email == EMAIL

    def test_find_by_uid_missing(self, db_locator):
        with pytest.raises(UserNotFound):
            db_locator.find_by_uid("nobody@x.com")

    def test_find_by_id(self, db_locator, user_id):
        assert db_locator.find_by_id(user_id).email == EMAIL

    def test_find_by_id_missing(self, db_locator):
        with pytest.raises(UserNotFound):
            db_locator.find_by_id(9999)

    def test_validate_credentials(self, db_locator):
        user = db_locator.find_by_uid(EMAIL)
        assert db_locator.validate_credentials(user, PASSWORD) is True
        assert db_locator.validate_credentials(user, "wrong") is False

    def test_primary_key_and_password_accessors(self, db_locator, user_id):
        user = db_locator.find_by_uid(EMAIL)
        assert db_locator.primary_key_of(user) == user_id
        assert db_locator.password_of(user).startswith("$2")

    def test_query_constrains_copy_only(self, db_locator, user_store, user_id):
        user_store.deactivate(user_id)
        active_only = db_locator.query(lambda c: c.is_active == 1)
        with pytest.raises(UserNotFound):
            active_only.find_by_uid(EMAIL)
        # The original locator is untouched.
        assert db_locator.find_by_uid(EMAIL).id == user_id

    def test_user_record_is_read_only_and_hides_password(self, db_locator):
        user = db_locator.find_by_uid(EMAIL)
        with pytest.raises(AttributeError):
            user.email = "other@x.com"
        assert "$2" not in repr(user)

    def test_reflects_application_table(self, engine, hasher):
        meta = MetaData()
        members = Table(
            "members",
            meta,
            Column("member_id", Integer, primary_key=True),
            Column("handle", String(50)),
            Column("pw", String(100)),
        )
        meta.create_all(engine)
        with engine.connect() as conn:
            conn.execute(members.insert().values(member_id=5, handle="dora", pw=hasher.hash("pw")))
            conn.commit()
        locator = DatabaseLocator(engine, hasher, table="members", uid="handle", password="pw", primary_key="member_id")
        user = locator.find_by_uid("dora")
        assert locator.primary_key_of(user) == 5
        assert locator.validate_credentials(user, "pw") is True

    def test_missing_uid_column_is_configuration_error(self, engine, hasher, user_id):
        locator = DatabaseLocator(engine, hasher, table="users", uid="nickname")
        with pytest.raises(ConfigurationError):
            locator.find_by_uid("x")

    def test_missing_table_is_storage_error(self, engine, hasher):
        locator = DatabaseLocator(engine, hasher, table="no_such_table")
        with pytest.raises(StorageError):
            locator.find_by_uid("x")


class TestOrmLocator:
    def test_find_by_uid_returns_model_instance(self, orm_locator):
        account = orm_locator.find_by_uid("bob")
        assert isinstance(account, Account)
        assert account.login == "bob"

    def test_find_by_id(self, orm_locator):
        account = orm_locator.find_by_uid("bob")
        assert orm_locator.find_by_id(account.id).login == "bob"

    def test_missing_user(self, orm_locator):
        with pytest.raises(UserNotFound):
            orm_locator.find_by_uid("nobody")

    def test_validate_credentials(self, orm_locator):
        account = orm_locator.find_by_uid("bob")
        assert orm_locator.validate_credentials(account, "hunter2") is True
        assert orm_locator.validate_credentials(account, "nope") is False

    def test_query_constraint(self, orm_locator):
        active_only = orm_locator.query(lambda model: model.is_active == 1)
        with pytest.raises(UserNotFound):
            active_only.find_by_uid("carol")
        assert orm_locator.find_by_uid("carol").login == "carol"

    def test_unknown_attribute_is_configuration_error(self, engine, hasher):
        with pytest.raises(ConfigurationError):
            OrmLocator(engine, hasher, model=Account, uid="email")


def test_build_locator_rejects_unknown_serializer(engine, hasher, settings):
    with pytest.raises(ConfigurationError):
        build_locator("lucid", engine, hasher, settings.authenticators["session"])
