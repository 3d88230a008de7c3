"""Permission and display helpers exposed to UI consumers."""

from types import SimpleNamespace

from forumsession.storage.models import UserRecord

OWNER = UserRecord(id=7, name="Ada Lovelace")


async def authenticated_page(make_page):
    return await make_page(initial_token="token-ada", initial_user=OWNER)


class TestCan:
    async def test_owner_is_permitted(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.can("edit", {"owner": {"id": 7}}) is True

    async def test_other_owner_is_denied(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.can("edit", {"owner": {"id": 8}}) is False

    async def test_guest_is_always_denied(self, make_page):
        page = await make_page()

        assert page.facade.can("edit", {"owner": {"id": 7}}) is False
        assert page.facade.can("edit", None) is False

    async def test_resource_without_owner_is_denied(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.can("edit", {"title": "orphan"}) is False
        assert page.facade.can("edit") is False

    async def test_user_key_and_attribute_resources(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.can("delete", {"user": {"id": 7}}) is True
        assert page.facade.can("delete", SimpleNamespace(owner=SimpleNamespace(id=7))) is True

    async def test_ids_compare_across_int_and_str(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.can("edit", {"owner": {"id": "7"}}) is True


class TestGetInitials:
    async def test_explicit_name(self, make_page):
        page = await make_page()

        assert page.facade.get_initials("grace brewster hopper") == "GB"
        assert page.facade.get_initials("cher") == "C"
        assert page.facade.get_initials("  alan   turing ") == "AT"

    async def test_falls_back_to_current_user(self, make_page):
        page = await authenticated_page(make_page)

        assert page.facade.get_initials() == "AL"

    async def test_question_mark_without_name(self, make_page):
        page = await make_page()

        assert page.facade.get_initials() == "?"
        assert page.facade.get_initials("   ") == "?"
