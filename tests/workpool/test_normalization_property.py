from __future__ import annotations

import string

from hypothesis import given
from hypothesis import strategies as st

import workpool.git as git
from workpool.creator import slugify
from workpool.registry import normalize_repository_id
from workpool.vcs import unique_branch_name

HOST_CHARS = string.ascii_letters + string.digits + "-."
PATH_CHARS = string.ascii_letters + string.digits + "-_."
SLUG_CHARS = set(string.ascii_lowercase + string.digits + "._-")

host_strategy = st.text(alphabet=HOST_CHARS, min_size=1, max_size=20)
path_strategy = st.lists(
    st.text(alphabet=PATH_CHARS, min_size=1, max_size=12), min_size=1, max_size=4
).map("/".join)


@given(host=host_strategy, path=path_strategy)
def test_scp_and_https_origins_share_identity(host: str, path: str) -> None:
    scp = git.normalize_origin_url(f"git@{host}:{path}.git")
    https = git.normalize_origin_url(f"https://{host}/{path}.git")

    assert scp == https
    assert scp.startswith(f"{host.lower()}/")


@given(st.text(max_size=40))
def test_slugify_is_idempotent_and_filesystem_safe(value: str) -> None:
    slug = slugify(value)

    assert slugify(slug) == slug
    assert set(slug) <= SLUG_CHARS
    assert not slug.startswith(("-", "."))
    assert not slug.endswith(("-", "."))


@given(
    name=st.text(alphabet=string.ascii_lowercase + "-", min_size=1, max_size=10),
    existing=st.sets(st.text(alphabet=string.ascii_lowercase + "-0123456789", max_size=12)),
)
def test_unique_branch_name_never_collides(name: str, existing: set[str]) -> None:
    chosen = unique_branch_name(name, existing)

    assert chosen not in existing
    assert chosen == name or chosen.startswith(f"{name}-")
    if name not in existing:
        assert chosen == name


@given(
    value=st.text(alphabet=string.ascii_letters + string.digits + "/._-", max_size=30),
    padding=st.text(alphabet=" \t", max_size=3),
)
def test_repository_ids_ignore_case_and_padding(value: str, padding: str) -> None:
    key = normalize_repository_id(value)

    assert normalize_repository_id(f"{padding}{value.upper()}{padding}") == key
    assert normalize_repository_id(key) == key
