import pytest

from application.services.retry_executor import RetryExecutor, RetryPolicy, is_transient
from domain.payment.exceptions import PaymentAdapterError, payment_error
from shared.codes.payment_codes import PaymentErrorCode


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.calls = 0
        self.result = result

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise payment_error(self.failures.pop(0), "scripted")
        return self.result


@pytest.mark.asyncio
async def test_retries_transient_errors_with_exponential_backoff(executor, sleeps):
    fn = Flaky([PaymentErrorCode.NETWORK_ERROR, PaymentErrorCode.TIMEOUT])
    assert await executor.run(fn, operation="create_payment_intent") == "ok"
    assert fn.calls == 3
    assert sleeps == [1, 2]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts_and_reraises_last_error(executor, sleeps):
    fn = Flaky([PaymentErrorCode.API_ERROR] * 5)
    with pytest.raises(PaymentAdapterError) as exc:
        await executor.run(fn)
    assert exc.value.error_code == PaymentErrorCode.API_ERROR
    assert fn.calls == 3
    assert sleeps == [1, 2]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "code",
    [
        PaymentErrorCode.CARD_DECLINED,
        PaymentErrorCode.INVALID_API_KEY,
        PaymentErrorCode.INVALID_SIGNATURE,
        PaymentErrorCode.IDEMPOTENCY_KEY_REUSED,
        PaymentErrorCode.OPERATION_NOT_SUPPORTED,
    ],
)
async def test_non_transient_errors_are_not_retried(executor, sleeps, code):
    fn = Flaky([code])
    with pytest.raises(PaymentAdapterError) as exc:
        await executor.run(fn)
    assert exc.value.error_code == code
    assert fn.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_delay_is_capped():
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    policy = RetryPolicy(max_attempts=5, initial_delay=1.0, multiplier=2.0, max_delay=4.0)
    fn = Flaky([PaymentErrorCode.TIMEOUT] * 4)
    assert await RetryExecutor(policy, sleep=fake_sleep).run(fn) == "ok"
    assert recorded == [1, 2, 4, 4]
    assert [policy.delay_for(n) for n in range(1, 5)] == recorded


@pytest.mark.asyncio
async def test_foreign_exceptions_propagate_unretried(executor, sleeps):
    calls = 0

    async def boom():
        nonlocal calls
        calls += 1
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        await executor.run(boom)
    assert calls == 1
    assert sleeps == []


def test_is_transient_classification():
    assert is_transient(payment_error(PaymentErrorCode.TIMEOUT))
    assert not is_transient(payment_error(PaymentErrorCode.CARD_DECLINED))
    assert not is_transient(ValueError("x"))
