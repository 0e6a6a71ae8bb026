import random

from payouts.payment_rail_service import RailRequest, SimulatedPaymentRail


def make_request(payment_method="bank_transfer"):
    return RailRequest(
        transaction_id=1,
        schedule_id=1,
        reference="COLLECTION-PHARMACY-20240601120000-ABCDEF12",
        transaction_type="collection",
        payment_method=payment_method,
        amount=1234.5,
    )


async def test_simulated_rail_confirms():
    rail = SimulatedPaymentRail(delay_seconds=0, failure_rate=0.0)
    result = await rail.confirm(make_request())
    assert result.success is True
    assert result.failure_reason is None


async def test_simulated_rail_rejects_with_method_reason():
    rail = SimulatedPaymentRail(delay_seconds=0, failure_rate=1.0, rng=random.Random(7))

    bank = await rail.confirm(make_request("bank_transfer"))
    assert bank.success is False
    assert bank.failure_reason == "Bank transfer failed - insufficient account details"

    wallet = await rail.confirm(make_request("mobile_wallet"))
    assert wallet.failure_reason == SimulatedPaymentRail.FAILURE_REASONS["mobile_wallet"]
