"""Pure string helpers for slash separated store paths."""
import posixpath


def no_slash_prefix(s: str) -> str:
    if s.startswith("/"):
        return s[1:]
    return s


def no_slash_suffix(s: str) -> str:
    if s.endswith("/"):
        return s[:-1]
    return s


def fix_trailing_slash(s: str, want_slash: bool) -> str:
    if not want_slash:
        return no_slash_suffix(s)
    if not s.endswith("/"):
        return s + "/"
    return s


def to_key(path: str) -> str:
    """Convert a path into an object key (no leading or trailing slash)."""
    return no_slash_suffix(no_slash_prefix(path))


def dir_prefix(key: str) -> str:
    """Listing prefix for the children of a key; the root lists everything."""
    if key == "":
        return ""
    return fix_trailing_slash(key, True)


def last_elem(s: str) -> str:
    return posixpath.basename(no_slash_suffix(s))


def parent_key(key: str) -> str:
    """Parent of a key, the empty string being the root."""
    return posixpath.dirname(to_key(key))


def is_root(path: str) -> bool:
    return to_key(path) == ""


def split(path: str) -> list[str]:
    """Split a path into its elements, ignoring one leading and one trailing slash."""
    key = to_key(path)
    if key == "":
        return []
    return key.split("/")


def join(base: str, name: str) -> str:
    return posixpath.join(base, name)
