"""
Unit tests for the LivingApps gateway client.

Contract:
- list/create/update/delete map onto GET/POST/PATCH/DELETE of /apps/<app_id>/records[/<id>]
- fields are passed through untouched (None values are left out)
- non-2xx answers raise GatewayError; reads are retried on server errors, writes are not
"""

import asyncio
import json
import unittest

import httpx

from fake_livingapps import FakeLivingApps
from kursverwaltung.gateway import GatewayError, RecordGateway, build_headers
from kursverwaltung.models import build_entities

BASE = "https://my.living-apps.de/rest"


class TestGateway(unittest.TestCase):
    def setUp(self) -> None:
        self.fake = FakeLivingApps()
        self.entities = build_entities({"dozenten": "app-doz"})

    def run_with_gateway(self, fn):
        async def runner():
            async with httpx.AsyncClient(transport=self.fake.transport()) as client:
                return await fn(RecordGateway(client, BASE))

        return asyncio.run(runner())

    def test_create_then_list_round_trip(self) -> None:
        ent = self.entities["dozenten"]
        fields = {"name": "Ada", "email": "ada@example.org", "telefon": "", "fachgebiet": "Mathe"}

        async def scenario(gw):
            created = await gw.create(ent, fields)
            return created, await gw.list(ent)

        created, listed = self.run_with_gateway(scenario)
        self.assertEqual(created.fields, fields)
        self.assertEqual([r.record_id for r in listed], [created.record_id])
        self.assertEqual(listed[0].fields, fields)
        post = self.fake.calls("POST")[0]
        self.assertEqual(post.url.path, "/rest/apps/app-doz/records")
        self.assertEqual(json.loads(post.content), {"fields": fields})

    def test_update_sends_partial_fields(self) -> None:
        ent = self.entities["anmeldungen"]
        rid = self.fake.add("anmeldungen", {"bezahlt": False, "anmeldedatum": "2024-01-01"})

        rec = self.run_with_gateway(lambda gw: gw.update(ent, rid, {"bezahlt": True, "note": None}))
        self.assertEqual(rec.record_id, rid)
        self.assertEqual(self.fake.fields("anmeldungen", rid), {"bezahlt": True, "anmeldedatum": "2024-01-01"})
        patch = self.fake.calls("PATCH")[0]
        self.assertEqual(json.loads(patch.content), {"fields": {"bezahlt": True}})

    def test_delete_and_missing_record(self) -> None:
        ent = self.entities["raeume"]
        rid = self.fake.add("raeume", {"raumname": "A1"})
        self.run_with_gateway(lambda gw: gw.delete(ent, rid))
        self.assertEqual(self.fake.apps["raeume"], {})

        with self.assertRaises(GatewayError) as ctx:
            self.run_with_gateway(lambda gw: gw.delete(ent, rid))
        self.assertEqual(ctx.exception.status_code, 404)

    def test_list_retries_server_errors(self) -> None:
        ent = self.entities["kurse"]
        self.fake.failing.add(("GET", "kurse"))
        with self.assertRaises(GatewayError) as ctx:
            self.run_with_gateway(lambda gw: gw.list(ent))
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(len(self.fake.calls("GET")), 3)

    def test_writes_are_not_retried(self) -> None:
        ent = self.entities["kurse"]
        self.fake.failing.add(("POST", "kurse"))
        with self.assertRaises(GatewayError):
            self.run_with_gateway(lambda gw: gw.create(ent, {"titel": "x"}))
        self.assertEqual(len(self.fake.calls("POST")), 1)

    def test_create_without_id_in_response_still_succeeds(self) -> None:
        def no_id(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={})

        async def runner():
            async with httpx.AsyncClient(transport=httpx.MockTransport(no_id)) as client:
                return await RecordGateway(client, BASE).create(self.entities["raeume"], {"raumname": "C3", "x": None})

        with self.assertLogs("kursverwaltung.gateway", level="WARNING"):
            rec = asyncio.run(runner())
        self.assertEqual(rec.record_id, "")
        self.assertEqual(rec.fields, {"raumname": "C3"})

    def test_transport_error_becomes_gateway_error(self) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async def runner():
            async with httpx.AsyncClient(transport=httpx.MockTransport(broken)) as client:
                await RecordGateway(client, BASE, read_attempts=1).list(self.entities["kurse"])

        with self.assertRaises(GatewayError) as ctx:
            asyncio.run(runner())
        self.assertIsNone(ctx.exception.status_code)


class TestHeaders(unittest.TestCase):
    def test_credentials_are_forwarded(self) -> None:
        headers = build_headers("secret", "session=abc")
        self.assertEqual(headers["Authorization"], "Bearer secret")
        self.assertEqual(headers["Cookie"], "session=abc")

    def test_secrets_not_logged(self) -> None:
        with self.assertLogs("kursverwaltung.gateway", level="INFO") as logs:
            build_headers("secret", None)
        self.assertFalse(any("secret" in line for line in logs.output))
        self.assertNotIn("Authorization", build_headers(None, None))


if __name__ == "__main__":
    unittest.main()
