# polyci_workflow.py
# Continuous integration for the monorepo: smart contracts (rust), ai models
# (python matrix), backend (go) and frontend (typescript), plus a summary gate.
from __future__ import annotations

from polyci.dsl import job, matrix, sh, summary, wf
from polyci.model import Condition
from polyci.step_workflows.artifact import upload_artifact_step
from polyci.step_workflows.cache import cache_step
from polyci.step_workflows.checkout import checkout_step
from polyci.step_workflows.coverage import coverage_step
from polyci.step_workflows.notify import notify_step
from polyci.step_workflows.toolchain import setup_toolchain_step
from polyci.triggers import on_manual, on_pull_request, on_push

RUN_LINK = "Check workflow: ${{ run.url }}"


def _failed(what: str) -> str:
    return f"{what} failed in ${{{{ run.repository }}}} on branch ${{{{ run.branch }}}}"


def workflow():
    return wf(
        job(
            "test-rust",
            checkout_step(depth=1),
            setup_toolchain_step("rust", "${{ env.RUST_VERSION }}", name="Set up Rust", components=["rustfmt", "clippy"]),
            cache_step(
                "Cache Rust dependencies",
                namespace="rust",
                version="${{ env.RUST_VERSION }}",
                paths=[
                    "~/.cargo/bin/",
                    "~/.cargo/registry/index/",
                    "~/.cargo/registry/cache/",
                    "~/.cargo/git/db/",
                    "smart-contracts/target/",
                ],
                lockfiles=["**/Cargo.lock"],
            ),
            sh(
                "Install Solana CLI",
                'command -v solana || sh -c "$(curl -sSfL https://release.solana.com/v1.18.0/install)"',
            ),
            sh(
                "Run Rust tests",
                "cargo test --all-features --verbose",
                cwd="smart-contracts",
                env={"RUST_BACKTRACE": "1"},
            ),
            sh("Build Rust project", "cargo build --release", cwd="smart-contracts"),
            upload_artifact_step(
                "Upload Rust test artifacts",
                artifact="rust-test-logs",
                path="smart-contracts/target/debug/*.log",
                retention_days=7,
                condition=Condition.ALWAYS,
            ),
            notify_step(f"{_failed('Rust tests')}. {RUN_LINK}"),
        ),

        job(
            "test-python",
            checkout_step(depth=1),
            setup_toolchain_step("python", "${{ matrix.python-version }}", name="Set up Python"),
            cache_step(
                "Cache Python dependencies",
                namespace="python",
                version="${{ matrix.python-version }}",
                paths=["~/.cache/pip"],
                lockfiles=["**/requirements.txt", "**/pyproject.toml"],
            ),
            sh(
                "Install dependencies",
                "python -m pip install --upgrade pip && "
                "python -m pip install pytest pytest-cov flake8 black isort && "
                "if [ -f requirements.txt ]; then python -m pip install -r requirements.txt; fi",
                cwd="ai-models",
            ),
            sh("Run Python tests with coverage", "python -m pytest -v --cov=./ --cov-report=xml", cwd="ai-models"),
            coverage_step("Upload Python coverage report", files="ai-models/coverage.xml"),
            notify_step(
                f"{_failed('Python tests')} for Python ${{{{ matrix.python-version }}}}. {RUN_LINK}"
            ),
            strategy=matrix("python-version", ["3.9", "3.10", "3.11"]),
        ),

        job(
            "test-go",
            checkout_step(depth=1),
            setup_toolchain_step("go", "${{ env.GO_VERSION }}", name="Set up Go"),
            cache_step(
                "Cache Go dependencies",
                namespace="go",
                version="${{ env.GO_VERSION }}",
                paths=["~/go/pkg/mod", "~/.cache/go-build"],
                lockfiles=["**/go.sum"],
            ),
            sh("Run Go tests with coverage", "go test -v -coverprofile=coverage.out ./...", cwd="backend"),
            coverage_step("Upload Go coverage report", files="backend/coverage.out"),
            sh("Build Go project", "go build -o app ./...", cwd="backend"),
            upload_artifact_step("Upload Go build artifact", artifact="go-app", path="backend/app", retention_days=7),
            notify_step(f"{_failed('Go tests')}. {RUN_LINK}"),
        ),

        job(
            "test-typescript",
            checkout_step(depth=1),
            setup_toolchain_step("node", "${{ env.NODE_VERSION }}", name="Set up Node.js"),
            cache_step(
                "Cache Node.js dependencies",
                namespace="node",
                version="${{ env.NODE_VERSION }}",
                paths=["~/.npm"],
                lockfiles=["**/package-lock.json", "**/yarn.lock"],
            ),
            sh("Install dependencies", "npm ci", fallback="yarn install --frozen-lockfile", cwd="frontend"),
            sh("Run TypeScript tests", "npm test", fallback="yarn test", cwd="frontend"),
            sh("Build TypeScript project", "npm run build", fallback="yarn build", cwd="frontend"),
            upload_artifact_step(
                "Upload frontend build artifact",
                artifact="frontend-build",
                path="frontend/dist",
                retention_days=7,
            ),
            notify_step(f"{_failed('TypeScript tests')}. {RUN_LINK}"),
        ),

        summary(
            "ci-summary",
            checkout_step(depth=1),
            sh("Check test results", "echo 'All test jobs completed successfully.'"),
            notify_step(f"{_failed('One or more test jobs')}. {RUN_LINK}", name="Notify on overall failure"),
            needs=["test-rust", "test-python", "test-go", "test-typescript"],
        ),

        name="Continuous Integration",
        on=[
            on_push("main", "dev", "feature/**", "release/**"),
            on_pull_request("main", "dev", types=["opened", "synchronize", "reopened"]),
            on_manual(),
        ],
        env={
            "RUST_VERSION": "1.74.0",
            "PYTHON_VERSION": "3.11",
            "GO_VERSION": "1.21",
            "NODE_VERSION": "20",
            "CACHE_VERSION": "v1",
        },
    )
