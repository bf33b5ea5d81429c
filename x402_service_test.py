#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Tests for x402 payment requirements and verification."""

import asyncio
import base64
import json

from absl.testing import absltest
from enums import X402Network
from exceptions import ConfigError
from exceptions import InvalidPaymentError
from exceptions import UnsupportedPriceError
from services import x402_service
from services.x402_service import X402Service
from testing_fakes import encode_payment
from testing_fakes import FakeFacilitator
from testing_fakes import make_settings
from testing_fakes import PAYER_WALLET
from testing_fakes import SELLER_WALLET
from testing_fakes import SETTLEMENT_TX
from web3 import Web3
from x402.http import FacilitatorConfig
from x402.http import HTTPFacilitatorClient
from x402.mechanisms.evm.exact import ExactEvmServerScheme
from x402.schemas import AssetAmount

RESOURCE = "http://testserver/class/1/full"
BASE_SEPOLIA_USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


def _encode_json(value):
  return base64.b64encode(json.dumps(value).encode("utf-8")).decode("ascii")


class PriceConversionTest(absltest.TestCase):

  def test_usdc_atomic_amounts(self):
    cases = [
        ("$1.00", "1000000"),
        ("$2.00", "2000000"),
        ("1.5", "1500000"),
        (3, "3000000"),
        ("$0.0001", "100"),
    ]
    for price, expected in cases:
      with self.subTest(price=price):
        asset_amount = x402_service.process_price_to_atomic_amount(
            price, "base-sepolia"
        )
        self.assertEqual(asset_amount.amount, expected)
        self.assertEqual(asset_amount.asset, BASE_SEPOLIA_USDC)

  def test_malformed_price(self):
    for price in ("free", "$", "$0.00001", "$1000000000", "-1", True):
      with self.subTest(price=price):
        with self.assertRaises(UnsupportedPriceError):
          x402_service.process_price_to_atomic_amount(price, "base-sepolia")

  def test_unknown_network(self):
    with self.assertRaises(ConfigError):
      x402_service.process_price_to_atomic_amount("$1.00", "solana")

  def test_registered_money_parser_takes_precedence(self):
    scheme = ExactEvmServerScheme().register_money_parser(
        lambda amount, network: AssetAmount(
            amount="42",
            asset=SELLER_WALLET,
            extra={"name": "Yoga Token", "version": "1"},
        )
    )
    asset_amount = x402_service.process_price_to_atomic_amount(
        "$1.00", "base-sepolia", scheme
    )
    self.assertEqual(asset_amount.amount, "42")
    self.assertEqual(asset_amount.asset, SELLER_WALLET)


class PaymentRequirementsTest(absltest.TestCase):

  def test_build_payment_requirements(self):
    requirements = x402_service.build_payment_requirements(
        "$1.00", X402Network.BASE_SEPOLIA, SELLER_WALLET, RESOURCE, "Morning"
    )

    self.assertLen(requirements, 1)
    requirement = requirements[0]
    self.assertEqual(requirement.scheme, "exact")
    self.assertEqual(requirement.network, "base-sepolia")
    self.assertEqual(requirement.max_amount_required, "1000000")
    self.assertEqual(requirement.pay_to, Web3.to_checksum_address(SELLER_WALLET))
    self.assertEqual(requirement.asset, BASE_SEPOLIA_USDC)
    self.assertEqual(requirement.max_timeout_seconds, 60)
    self.assertEqual(requirement.extra, {"name": "USDC", "version": "2"})
    self.assertEqual(requirement.output_schema["input"]["method"], "GET")

  def test_mainnet_asset(self):
    requirement = x402_service.build_payment_requirements(
        "$2.00", "base", SELLER_WALLET, RESOURCE
    )[0]
    self.assertEqual(
        requirement.asset, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
    )
    self.assertEqual(requirement.extra, {"name": "USD Coin", "version": "2"})

  def test_requirements_are_deterministic(self):
    def build():
      return x402_service.payment_required_body(
          x402_service.build_payment_requirements(
              "$3.00", "base-sepolia", SELLER_WALLET, RESOURCE, "Flexibility"
          ),
          "X-PAYMENT header is required",
      )

    self.assertEqual(build(), build())

  def test_payment_required_body_uses_protocol_field_names(self):
    body = x402_service.payment_required_body(
        x402_service.build_payment_requirements(
            "$1.00", "base-sepolia", SELLER_WALLET, RESOURCE
        ),
        "Invalid payment",
    )
    self.assertEqual(body["x402Version"], 1)
    self.assertEqual(body["error"], "Invalid payment")
    accepts = body["accepts"]
    self.assertEqual(accepts[0]["maxAmountRequired"], "1000000")
    self.assertEqual(accepts[0]["mimeType"], "")
    self.assertEqual(accepts[0]["maxTimeoutSeconds"], 60)
    self.assertEqual(
        accepts[0]["outputSchema"],
        {"input": {"type": "http", "method": "GET", "discoverable": True}},
    )
    self.assertNotIn(None, accepts[0].values())
    json.dumps(body)

  def test_asset_without_eip712_domain(self):
    scheme = ExactEvmServerScheme().register_money_parser(
        lambda amount, network: AssetAmount(amount="1", asset=SELLER_WALLET)
    )
    with self.assertRaises(ConfigError):
      x402_service.build_payment_requirements(
          "$1.00", "base-sepolia", SELLER_WALLET, RESOURCE, scheme=scheme
      )

  def test_invalid_pay_to(self):
    with self.assertRaises(ConfigError):
      x402_service.build_payment_requirements(
          "$1.00", "base-sepolia", "0x1234", RESOURCE
      )


class DecodePaymentTest(absltest.TestCase):

  def test_decode_payment(self):
    payload = x402_service.decode_payment(encode_payment("1000000"))
    self.assertEqual(payload.scheme, "exact")
    self.assertEqual(payload.network, "base-sepolia")
    self.assertEqual(payload.x402_version, 1)
    authorization = x402_service.exact_payload(payload).authorization
    self.assertEqual(authorization.value, "1000000")
    self.assertEqual(authorization.to, SELLER_WALLET)
    self.assertEqual(authorization.from_address, PAYER_WALLET)

  def test_version_is_stamped(self):
    raw = json.loads(base64.b64decode(encode_payment("1000000")))
    raw["x402Version"] = 7
    payload = x402_service.decode_payment(_encode_json(raw))
    self.assertEqual(payload.x402_version, 1)

    del raw["x402Version"]
    payload = x402_service.decode_payment(_encode_json(raw))
    self.assertEqual(payload.x402_version, 1)

  def test_scheme_payload_passes_through(self):
    raw = json.loads(base64.b64decode(encode_payment("1000000")))
    raw["payload"]["hint"] = "kept"
    payload = x402_service.decode_payment(_encode_json(raw))
    dumped = payload.model_dump(mode="json", by_alias=True)
    self.assertEqual(dumped["payload"]["hint"], "kept")
    self.assertIn("from", dumped["payload"]["authorization"])

  def test_malformed_payloads(self):
    cases = {
        "not_base64": "%%%",
        "empty": "",
        "not_json": base64.b64encode(b"not json").decode("ascii"),
        "not_an_object": _encode_json([1, 2]),
        "wrong_shape": _encode_json({"scheme": "exact"}),
        "no_authorization": _encode_json({
            "scheme": "exact",
            "network": "base-sepolia",
            "payload": {"signature": "0x11"},
        }),
    }
    for name, proof in cases.items():
      with self.subTest(name):
        with self.assertRaises(InvalidPaymentError):
          x402_service.decode_payment(proof)


class MatchingTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.requirements = x402_service.build_payment_requirements(
        "$1.00", "base-sepolia", SELLER_WALLET, RESOURCE
    )

  def _match(self, proof):
    return x402_service.find_matching_payment_requirements(
        self.requirements, x402_service.decode_payment(proof)
    )

  def test_match(self):
    self.assertIs(self._match(encode_payment("1000000")), self.requirements[0])

  def test_recipient_comparison_ignores_case(self):
    proof = encode_payment(
        "1000000", to=Web3.to_checksum_address(SELLER_WALLET)
    )
    self.assertIsNotNone(self._match(proof))

  def test_mismatches(self):
    cases = {
        "amount": encode_payment("999999"),
        "overpay": encode_payment("2000000"),
        "recipient": encode_payment(
            "1000000", to="0x0000000000000000000000000000000000000001"
        ),
        "network": encode_payment("1000000", network="base"),
        "scheme": encode_payment("1000000", scheme="upto"),
        "non_numeric_value": encode_payment("lots"),
    }
    for name, proof in cases.items():
      with self.subTest(name):
        self.assertIsNone(self._match(proof))


class VerifyPaymentTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.facilitator = FakeFacilitator()

  def _verify(self, proof, settings=None, expected_amount=1_000_000):
    settings = settings or make_settings()

    async def run():
      async with self.facilitator.client() as http_client:
        facilitator = HTTPFacilitatorClient(
            FacilitatorConfig(
                url=settings.facilitator_url,
                timeout=settings.external_call_timeout,
                http_client=http_client,
            )
        )
        service = X402Service(settings, facilitator)
        return await service.verify_payment(
            proof,
            expected_amount,
            SELLER_WALLET,
            RESOURCE,
            "$1.00",
            settings.x402_network,
            "Morning Flow - full video",
        )

    return asyncio.run(run())

  def test_valid_payment_is_settled(self):
    result = self._verify(encode_payment("1000000"))

    self.assertTrue(result.valid)
    self.assertEqual(result.tx_hash, SETTLEMENT_TX)
    self.assertEqual(self.facilitator.paths(), ["/verify", "/settle"])
    body = self.facilitator.requests[0]["body"]
    self.assertEqual(body["x402Version"], 1)
    self.assertEqual(
        body["paymentRequirements"]["payTo"],
        Web3.to_checksum_address(SELLER_WALLET),
    )
    self.assertEqual(
        body["paymentRequirements"]["description"], "Morning Flow - full video"
    )
    self.assertEqual(
        body["paymentPayload"]["payload"]["authorization"]["from"], PAYER_WALLET
    )
    self.assertEqual(result.payer, PAYER_WALLET)

  def test_facilitator_sees_the_advertised_requirements(self):
    self._verify(encode_payment("1000000"))

    advertised = x402_service.payment_required_body(
        x402_service.build_payment_requirements(
            "$1.00",
            "base-sepolia",
            SELLER_WALLET,
            RESOURCE,
            "Morning Flow - full video",
        ),
        "Invalid payment",
    )["accepts"][0]
    for request in self.facilitator.requests:
      with self.subTest(request["path"]):
        sent = request["body"]["paymentRequirements"]
        self.assertEqual(sent, advertised)
        self.assertNotIn(None, sent.values())

  def test_undecodable_proof_makes_no_facilitator_call(self):
    result = self._verify("not-base64!")
    self.assertFalse(result.valid)
    self.assertEmpty(self.facilitator.requests)

  def test_wrong_amount_makes_no_facilitator_call(self):
    result = self._verify(encode_payment("500000"))
    self.assertFalse(result.valid)
    self.assertEmpty(self.facilitator.requests)

  def test_expected_amount_disagreeing_with_price(self):
    result = self._verify(encode_payment("1000000"), expected_amount=2_000_000)
    self.assertFalse(result.valid)
    self.assertEmpty(self.facilitator.requests)

  def test_rejected_by_facilitator_is_not_settled(self):
    self.facilitator.is_valid = False
    result = self._verify(encode_payment("1000000"))
    self.assertFalse(result.valid)
    self.assertEqual(self.facilitator.paths(), ["/verify"])

  def test_settlement_failure(self):
    self.facilitator.settle_success = False
    result = self._verify(encode_payment("1000000"))
    self.assertFalse(result.valid)
    self.assertIsNone(result.tx_hash)
    self.assertEqual(self.facilitator.paths(), ["/verify", "/settle"])

  def test_facilitator_error_status(self):
    self.facilitator.status_code = 503
    result = self._verify(encode_payment("1000000"))
    self.assertFalse(result.valid)
    self.assertEqual(self.facilitator.paths(), ["/verify"])

  def test_slow_facilitator_times_out_without_settling(self):
    self.facilitator.delay = 1.0
    result = self._verify(
        encode_payment("1000000"),
        settings=make_settings(external_call_timeout=0.01),
    )
    self.assertFalse(result.valid)
    self.assertIsNone(result.tx_hash)
    self.assertNotIn("/settle", self.facilitator.paths())

  def test_demo_proof_in_demo_mode(self):
    result = self._verify("demo", settings=make_settings(x402_demo_mode=True))
    self.assertTrue(result.valid)
    self.assertEqual(result.tx_hash, "demo")
    self.assertEmpty(self.facilitator.requests)

  def test_demo_proof_without_demo_mode(self):
    result = self._verify("demo")
    self.assertFalse(result.valid)
    self.assertEmpty(self.facilitator.requests)

  def test_verbose_logging_does_not_change_outcome(self):
    result = self._verify(
        encode_payment("1000000"),
        settings=make_settings(verbose_payment_logging=True),
    )
    self.assertTrue(result.valid)

  def test_encode_payment_response(self):
    result = self._verify(encode_payment("1000000"))
    header = x402_service.encode_payment_response(result, "base-sepolia")
    decoded = json.loads(base64.b64decode(header))
    self.assertEqual(
        decoded,
        {
            "success": True,
            "transaction": SETTLEMENT_TX,
            "network": "base-sepolia",
            "payer": result.payer,
        },
    )


if __name__ == "__main__":
  absltest.main()
