import os


def is_test_env() -> bool:
    return os.getenv("ENV", "local") == "test"


def eager_overrides() -> dict:
    """
    In ENV=test tasks run inline in the calling process, and a failing task
    never bubbles into the caller (same contract as a real broker).
    """
    if not is_test_env():
        return {}
    return {
        "task_always_eager": True,
        "task_eager_propagates": False,
        "broker_url": "memory://",
        "result_backend": "cache+memory://",
    }
