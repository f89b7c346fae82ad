"""
In-memory stand-ins for the Redis queue and the Google Maps HTTP API.
"""

import json

import httpx

from courier_backend.app.core.config import settings

# Google's documented sample polyline
SAMPLE_POLYLINE = "_p~iF~ps|U_ulLnnqC_mqNvxq`@"
SAMPLE_POLYLINE_POINTS = [(38.5, -120.2), (40.7, -120.95), (43.252, -126.453)]


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.lists = {}
        self._closed = False
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("Redis unavailable")

    async def ping(self):
        if self._closed or self.fail:
            return False
        return True

    async def rpush(self, key, *values):
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lpop(self, key):
        self._check()
        items = self.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    async def lmove(self, source, destination, src="LEFT", dest="RIGHT"):
        self._check()
        items = self.lists.get(source)
        if not items:
            return None
        value = items.pop(0 if src == "LEFT" else -1)
        target = self.lists.setdefault(destination, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def lrem(self, key, count, value):
        # Only the count > 0 form is needed: remove from the head
        self._check()
        items = self.lists.get(key, [])
        removed = 0
        while value in items and removed < count:
            items.remove(value)
            removed += 1
        return removed

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def flushdb(self):
        if not self._closed:
            self.lists = {}

    async def aclose(self):
        self._closed = True
        self.lists = {}

    def jobs(self, key=None):
        """Decoded jobs currently on a queue, oldest first."""
        return [json.loads(raw) for raw in self.lists.get(key or settings.notification_queue_name, [])]

    def events(self, key=None):
        return [job["event"] for job in self.jobs(key)]


class MapsStub:
    """
    Stand-in for the Google Maps HTTP API, served through ``httpx.MockTransport``.

    Every address geocodes to a Nairobi coordinate with ", Kenya" appended to
    the formatted address. Set ``fail`` to make every call answer with a
    non-OK provider status.
    """

    def __init__(self):
        self.fail = False
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(200, json={"status": "OVER_QUERY_LIMIT", "results": [], "routes": []})

        if request.url.path.endswith("/geocode/json"):
            address = request.url.params.get("address") or request.url.params.get("latlng")
            return httpx.Response(200, json={
                "status": "OK",
                "results": [{
                    "formatted_address": f"{address}, Kenya",
                    "geometry": {"location": {"lat": -1.2921, "lng": 36.8219}},
                    "place_id": "stub-place",
                }],
            })

        if request.url.path.endswith("/directions/json"):
            return httpx.Response(200, json={
                "status": "OK",
                "routes": [{
                    "legs": [{"distance": {"value": 12500}, "duration": {"value": 5400}}],
                    "overview_polyline": {"points": SAMPLE_POLYLINE},
                }],
            })

        return httpx.Response(404, json={"status": "NOT_FOUND"})

    def paths(self):
        return [request.url.path for request in self.requests]
