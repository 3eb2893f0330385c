"""Tests for signed response links."""

import uuid
import unittest

from jose import jwt

from clubreach.core.config import settings
from clubreach.modules.outreach.links import build_response_link, issue_response_token, verify_response_token


class TestResponseTokens(unittest.TestCase):
    def test_round_trip(self):
        cid, rid = uuid.uuid4(), uuid.uuid4()
        claims = verify_response_token(issue_response_token(cid, rid))
        self.assertEqual((claims.campaign_id, claims.recipient_id), (cid, rid))

    def test_rejects_tampering_and_expiry(self):
        header, _, signature = issue_response_token(uuid.uuid4(), uuid.uuid4()).split(".")
        swapped_claims = issue_response_token(uuid.uuid4(), uuid.uuid4()).split(".")[1]
        self.assertIsNone(verify_response_token(".".join([header, swapped_claims, signature])))
        self.assertIsNone(verify_response_token(issue_response_token(uuid.uuid4(), uuid.uuid4(), ttl_days=-1)))
        forged = jwt.encode({"sub": str(uuid.uuid4()), "cid": str(uuid.uuid4()), "typ": "outreach_response"}, "other-secret")
        self.assertIsNone(verify_response_token(forged))

    def test_rejects_other_token_types(self):
        token = jwt.encode({"sub": str(uuid.uuid4()), "cid": str(uuid.uuid4())}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
        self.assertIsNone(verify_response_token(token))

    def test_link_points_at_respond_route(self):
        link = build_response_link(uuid.uuid4(), uuid.uuid4())
        self.assertTrue(link.startswith(f"{settings.APP_URL}{settings.API_PREFIX}/outreach/respond?token="))


if __name__ == "__main__":
    unittest.main()
