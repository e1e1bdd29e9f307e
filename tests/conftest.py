import requests


class FakeResponse:
    def __init__(self, url, status_code=200, body=b""):
        self.url = url
        self.status_code = status_code
        self.body = body
        self.closed = False

    @property
    def text(self):
        return self.body.decode('utf-8')

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses keyed by URL; unknown URLs get a 404."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.requested = []

    def get(self, url, **kwargs):
        self.requested.append(url)
        route = self.routes.get(url, 404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, int):
            return FakeResponse(url, status_code=route)
        if isinstance(route, str):
            route = route.encode('utf-8')
        return FakeResponse(url, body=route)


