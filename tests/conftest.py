"""Global test configuration — runs before any test module imports."""
import os

# Must be set BEFORE any agentvault imports; slowapi reads this at init
os.environ["RATELIMIT_ENABLED"] = "False"
# Fixed vault key for every test that builds a SecretStore from the environment
os.environ.setdefault("AGENTVAULT_VAULT_KEY", "11" * 32)

TEST_VAULT_KEY = os.environ["AGENTVAULT_VAULT_KEY"]


def pytest_configure(config):
    """Disable rate limiter after all imports."""
    from agentvault.security import limiter
    limiter.enabled = False
