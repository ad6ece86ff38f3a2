import httpx
import pytest

from fortress.app.collaborators.github import GitHubDataSource, parse_target

pytestmark = pytest.mark.anyio


REPO_JSON = {
    "name": "widgets",
    "owner": {"login": "acme"},
    "html_url": "https://github.com/acme/widgets",
    "default_branch": "main",
    "description": "Widget factory",
    "language": "Python",
    "stargazers_count": 42,
}


def _source(handler, **kwargs) -> GitHubDataSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitHubDataSource(client, **kwargs)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://github.com/acme/widgets", ("acme", "widgets")),
        ("https://github.com/acme/widgets.git", ("acme", "widgets")),
        ("github.com/acme/widgets/", ("acme", "widgets")),
        ("acme/widgets", ("acme", "widgets")),
        ("not a repo", None),
        ("https://gitlab.com/acme/widgets", None),
    ],
)
def test_parse_target(raw, expected):
    assert parse_target(raw) == expected


async def test_fetch_maps_repository_metadata():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=REPO_JSON)

    source = _source(handler, token="secret-token")

    metadata = await source.fetch("https://github.com/acme/widgets")

    assert metadata.full_name == "acme/widgets"
    assert metadata.default_branch == "main"
    assert metadata.stars == 42
    assert seen[0].url.path == "/repos/acme/widgets"
    assert seen[0].headers["Authorization"] == "Bearer secret-token"


async def test_missing_repository_resolves_to_none():
    source = _source(lambda request: httpx.Response(404, json={}))

    assert await source.fetch("acme/ghost") is None


async def test_unparseable_target_resolves_to_none_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=REPO_JSON)

    source = _source(handler)

    assert await source.fetch("definitely not a url") is None
    assert calls == []


async def test_server_errors_are_raised_for_the_retry_policy():
    source = _source(lambda request: httpx.Response(503))

    with pytest.raises(httpx.HTTPStatusError):
        await source.fetch("acme/widgets")
