from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


class ConfigEnvLoadingTests(unittest.TestCase):
    def _run(self, code: str, router_env_file: str) -> subprocess.CompletedProcess[str]:
        root = Path(__file__).resolve().parents[1]
        env = os.environ.copy()
        env["ROUTER_ENV_FILE"] = router_env_file
        return subprocess.run(
            [sys.executable, "-c", code],
            cwd=str(root),
            env=env,
            capture_output=True,
            text=True,
        )

    def test_missing_router_env_file_fails_fast(self) -> None:
        result = self._run("import config; print('ok')", "env/__definitely_missing_env_for_test__.env")
        self.assertNotEqual(result.returncode, 0)
        details = (result.stdout + "\n" + result.stderr).lower()
        self.assertIn("router_env_file", details)
        self.assertIn("does not exist", details)

    def test_existing_router_env_file_is_applied(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "router.env"
            env_path.write_text("UNITTEST_ROUTER_ENV_FLAG=loaded\n", encoding="utf-8")
            result = self._run(
                "import os, config; print(os.getenv('UNITTEST_ROUTER_ENV_FLAG', ''))",
                str(env_path),
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "loaded")

    def test_bom_prefixed_env_file_keeps_first_key(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "router.env"
            env_path.write_text("MAX_SLIPPAGE_PERCENT=7.5\nRETRY_MAX_RETRIES=1\n", encoding="utf-8-sig")
            result = self._run(
                "import config; print(f'{config.MAX_SLIPPAGE_PERCENT}|{config.RETRY_MAX_RETRIES}')",
                str(env_path),
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "7.5|1")

    def test_router_settings_are_loaded_from_env(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / "router.env"
            env_path.write_text(
                "\n".join(
                    [
                        "NETWORK=mainnet",
                        "MEV_PROTECTION_ENABLED=true",
                        "MEV_MAX_PRIORITY_FEE_GWEI=3",
                        "RETRY_COUNT_FIRST_ATTEMPT=yes",
                    ]
                )
                + "\n",
                encoding="utf-8",
            )
            result = self._run(
                (
                    "import config; cfg = config.build_trading_config(); "
                    "print(f\"{cfg.chain_id}|{cfg.mev_protection.enabled}|"
                    "{cfg.mev_protection.max_priority_fee}|{cfg.retry.count_first_attempt}|"
                    "{cfg.dex_venues[0].name}\")"
                ),
                str(env_path),
            )
        self.assertEqual(result.returncode, 0, msg=result.stderr)
        self.assertEqual(result.stdout.strip(), "1116|True|3000000000|True|icecreamswap")


if __name__ == "__main__":
    unittest.main()
