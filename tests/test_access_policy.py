import pytest

from library_app.access_policy import (
    DEFAULT_RULE,
    POLICY,
    Decision,
    PathPattern,
    Requirement,
    authorize,
    evaluate,
    find_rule,
    rule,
)
from library_app.errors import ForbiddenError, UnauthorizedError
from library_app.models import Role
from library_app.security import Identity

USER = Identity(user_id=1, email="ada@example.com", role=Role.USER)
LIBRARIAN = Identity(user_id=2, email="lena@example.com", role=Role.LIBRARIAN)
ADMIN = Identity(user_id=3, email="admin@example.com", role=Role.ADMIN)


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("/books/**", "/books", True),
        ("/books/**", "/books/1", True),
        ("/books/**", "/books/search/title", True),
        ("/books/**", "/bookshelf", False),
        ("/users", "/users", True),
        ("/users", "/users/1", False),
        ("/users/{id}", "/users/7", True),
        ("/users/*", "/users/7/activate", False),
        ("/loans/*/return", "/loans/5/return", True),
        ("/books/**", "/books/1?x=2", True),
    ],
)
def test_path_pattern_matching(pattern, path, expected):
    assert PathPattern(pattern).matches(path) is expected


def test_double_wildcard_only_allowed_last():
    with pytest.raises(ValueError):
        PathPattern("/books/**/reviews")


@pytest.mark.parametrize(
    "method, path, identity, expected",
    [
        ("GET", "/docs", None, Decision.ALLOW),
        ("GET", "/openapi/openapi.json", None, Decision.ALLOW),
        ("HEAD", "/openapi/openapi.json", None, Decision.ALLOW),
        ("POST", "/users", None, Decision.ALLOW),
        ("POST", "/users", USER, Decision.FORBIDDEN),
        ("GET", "/books", None, Decision.ALLOW),
        ("GET", "/books/search/title", None, Decision.ALLOW),
        ("GET", "/categories/3", None, Decision.ALLOW),
        ("HEAD", "/books", None, Decision.ALLOW),
        ("HEAD", "/categories/3", None, Decision.ALLOW),
        ("POST", "/books", None, Decision.UNAUTHORIZED),
        ("POST", "/books", USER, Decision.FORBIDDEN),
        ("PUT", "/books/1", LIBRARIAN, Decision.ALLOW),
        ("DELETE", "/books/1", ADMIN, Decision.ALLOW),
        ("POST", "/categories", USER, Decision.FORBIDDEN),
        ("DELETE", "/categories/1", LIBRARIAN, Decision.ALLOW),
        ("GET", "/users/me", USER, Decision.ALLOW),
        ("PUT", "/users/me", USER, Decision.ALLOW),
        ("GET", "/users/me", None, Decision.UNAUTHORIZED),
        ("GET", "/users", LIBRARIAN, Decision.FORBIDDEN),
        ("GET", "/users/4", ADMIN, Decision.ALLOW),
        ("PUT", "/users/4/activate", ADMIN, Decision.ALLOW),
        ("DELETE", "/users/4", USER, Decision.FORBIDDEN),
        ("POST", "/users/anything", USER, Decision.FORBIDDEN),
        ("POST", "/loans/borrow/1", USER, Decision.ALLOW),
        ("GET", "/loans/overdue", None, Decision.UNAUTHORIZED),
        ("POST", "/notifications/overdue-alert", USER, Decision.ALLOW),
        ("GET", "/reports/summary", LIBRARIAN, Decision.FORBIDDEN),
        ("GET", "/reports/summary", ADMIN, Decision.ALLOW),
        ("GET", "/reviews", None, Decision.UNAUTHORIZED),
        ("GET", "/reviews", USER, Decision.ALLOW),
    ],
)
def test_policy_table(method, path, identity, expected):
    assert evaluate(method, path, identity) is expected


def test_first_matching_rule_wins():
    # /users/me is listed before the admin-only /users/** rule
    assert find_rule("GET", "/users/me").requirement is Requirement.AUTHENTICATED
    assert find_rule("GET", "/users/5").requirement is Requirement.ROLES


def test_unmatched_request_falls_back_to_authenticated():
    assert find_rule("PATCH", "/somewhere/else") is DEFAULT_RULE
    assert evaluate("PATCH", "/somewhere/else", None) is Decision.UNAUTHORIZED
    assert evaluate("PATCH", "/somewhere/else", USER) is Decision.ALLOW


def test_custom_rules_are_evaluated_in_order():
    rules = (
        rule(["GET"], ["/a/**"], Requirement.ROLES, [Role.ADMIN]),
        rule(None, ["/a/b"], Requirement.PUBLIC),
    )
    assert evaluate("GET", "/a/b", None, rules) is Decision.UNAUTHORIZED
    assert evaluate("POST", "/a/b", None, rules) is Decision.ALLOW


def test_policy_is_immutable():
    assert isinstance(POLICY, tuple)
    with pytest.raises(Exception):
        POLICY[0].requirement = Requirement.PUBLIC


def test_authorize_raises_typed_failures():
    with pytest.raises(UnauthorizedError):
        authorize("POST", "/books", None)
    with pytest.raises(ForbiddenError):
        authorize("POST", "/books", USER)
    authorize("POST", "/books", LIBRARIAN)
