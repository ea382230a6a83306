"""Tests for find-or-create customer resolution."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import StoreError, ValidationError
from app.db.models import Customer
from app.services.customers import CustomerResolver, normalize_email


class TestNormalizeEmail:
    def test_lowercases(self):
        assert normalize_email("  Ana.Lopez@Correo.MX ") == "ana.lopez@correo.mx"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_email_rejected(self, value):
        with pytest.raises(ValidationError):
            normalize_email(value)

    def test_malformed_email_rejected(self):
        with pytest.raises(ValidationError):
            normalize_email("not-an-email")


class TestResolveOrCreate:
    def test_creates_on_first_contact(self, db):
        customer = CustomerResolver(db).resolve_or_create("Ana@Correo.mx", name="Ana", phone="5512345678")
        db.commit()

        assert customer.id is not None
        assert customer.email == "ana@correo.mx"
        assert customer.name == "Ana"
        assert customer.phone == "5512345678"

    def test_same_email_any_case_resolves_to_same_customer(self, db):
        resolver = CustomerResolver(db)
        first = resolver.resolve_or_create("ana@correo.mx")
        second = resolver.resolve_or_create("ANA@CORREO.MX")
        db.commit()

        assert first.id == second.id
        assert db.execute(select(func.count(Customer.id))).scalar_one() == 1

    def test_present_fields_merged_absent_fields_preserved(self, db):
        resolver = CustomerResolver(db)
        resolver.resolve_or_create("ana@correo.mx", name="Ana", phone="5512345678", city="CDMX")
        db.commit()

        customer = resolver.resolve_or_create("ana@correo.mx", phone="5599999999", city=None)
        db.commit()

        assert customer.name == "Ana"
        assert customer.phone == "5599999999"
        assert customer.city == "CDMX"

    def test_does_not_commit(self, db, database):
        CustomerResolver(db).resolve_or_create("ana@correo.mx")
        db.rollback()

        with database.session() as other:
            assert other.execute(select(func.count(Customer.id))).scalar_one() == 0

    def test_unknown_profile_field_rejected(self, db):
        with pytest.raises(ValidationError):
            CustomerResolver(db).resolve_or_create("ana@correo.mx", favourite_colour="blue")

    def test_storage_failure_raises_store_error(self, db, monkeypatch):
        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        monkeypatch.setattr(db, "execute", boom)
        with pytest.raises(StoreError):
            CustomerResolver(db).resolve_or_create("ana@correo.mx")


class TestCustomerQueries:
    def test_update_profile_last_write_wins(self, db):
        resolver = CustomerResolver(db)
        customer = resolver.resolve_or_create("ana@correo.mx", name="Ana")
        resolver.update_profile(customer, name="Ana Lopez", neighborhood="Roma Norte")
        db.commit()

        found = resolver.get_by_email("ANA@correo.mx")
        assert found.name == "Ana Lopez"
        assert found.neighborhood == "Roma Norte"

    def test_list_and_search(self, db):
        resolver = CustomerResolver(db)
        resolver.resolve_or_create("ana@correo.mx", name="Ana Lopez")
        resolver.resolve_or_create("beto@correo.mx", name="Alberto Diaz")
        db.commit()

        assert resolver.count() == 2
        assert len(resolver.list_customers()) == 2
        assert [c.email for c in resolver.list_customers(search="lopez")] == ["ana@correo.mx"]
        assert [c.email for c in resolver.list_customers(search="BETO")] == ["beto@correo.mx"]
