import sys

import pytest

from pipewright.contracts import CommandTimeoutError
from pipewright.process import run_command


@pytest.mark.asyncio
async def test_run_command_captures_output(tmp_path):
    result = await run_command(
        [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
        tmp_path,
        timeout=30,
    )
    assert result.returncode == 3
    assert not result.ok
    assert result.stdout == "out"
    assert result.output == "out\nerr"


@pytest.mark.asyncio
async def test_run_command_kills_on_timeout(tmp_path):
    with pytest.raises(CommandTimeoutError, match="timed out after 0.2s"):
        await run_command([sys.executable, "-c", "import time; time.sleep(10)"], tmp_path, timeout=0.2)
