[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "esasg"
version = "0.1.0"
description = "Tools for running Elasticsearch clusters in autoscaling groups: shard draining, node queries, CloudWatch metric data and scheduled snapshots."
requires-python = ">=3.10"
keywords = ["elasticsearch", "autoscaling", "cloudwatch", "snapshots", "cluster"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]
dependencies = [
    "requests",
    "cachetools",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
esasg-snapshooter = "esasg.snapshooter:main"

[tool.hatch.build.targets.wheel]
packages = ["esasg"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
