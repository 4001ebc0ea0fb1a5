"""Minimal element tree over html.parser for room card fragments."""

from html.parser import HTMLParser

VOID_TAGS = {
    'area', 'base', 'br', 'col', 'embed', 'hr', 'img', 'input',
    'link', 'meta', 'param', 'source', 'track', 'wbr',
}


class Element:
    """A parsed HTML element with just enough API for class/attribute lookups."""

    def __init__(self, tag, attrs, parent=None):
        self.tag = tag
        self.attrs = attrs
        self.parent = parent
        self.children = []
        self._text = []

    @property
    def classes(self):
        return set((self.attrs.get('class') or '').split())

    def get(self, name, default=None):
        return self.attrs.get(name, default)

    def text(self):
        """Concatenated text of this element and all descendants, whitespace-collapsed."""
        parts = []
        self._collect_text(parts)
        return ' '.join(' '.join(parts).split())

    def _collect_text(self, parts):
        for item in self._text:
            if isinstance(item, Element):
                item._collect_text(parts)
            else:
                parts.append(item)

    def iter(self):
        for child in self.children:
            yield child
            yield from child.iter()

    def find_all(self, cls=None, tag=None, attr=None):
        """Descendants matching every given criterion (class name, tag, attribute present)."""
        return [
            el for el in self.iter()
            if (cls is None or cls in el.classes)
            and (tag is None or el.tag == tag)
            and (attr is None or attr in el.attrs)
        ]

    def find(self, cls=None, tag=None, attr=None):
        matches = self.find_all(cls=cls, tag=tag, attr=attr)
        return matches[0] if matches else None

    def find_id_prefix(self, prefix):
        """First element (self included) whose id starts with prefix."""
        for el in [self, *self.iter()]:
            el_id = el.get('id') or ''
            if el_id.startswith(prefix):
                return el
        return None


class _TreeBuilder(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.root = Element('#root', {})
        self._current = self.root

    def handle_starttag(self, tag, attrs):
        attrs_dict = {name: (value if value is not None else '') for name, value in attrs if name}
        el = Element(tag, attrs_dict, parent=self._current)
        self._current.children.append(el)
        self._current._text.append(el)
        if tag not in VOID_TAGS:
            self._current = el

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)
        if tag not in VOID_TAGS:
            self._current = self._current.parent

    def handle_endtag(self, tag):
        # Tolerate unbalanced markup: close up to the nearest matching open tag.
        node = self._current
        while node is not None and node.tag != tag:
            node = node.parent
        if node is not None and node.parent is not None:
            self._current = node.parent

    def handle_data(self, data):
        if data.strip():
            self._current._text.append(data)


def parse_html(markup):
    """Parse markup into an Element tree rooted at a synthetic '#root' element."""
    builder = _TreeBuilder()
    builder.feed(markup)
    builder.close()
    return builder.root
