from setuptools import setup, find_packages

setup(
    name="lot-rebalancer",
    version="1.0.0",
    author="Lot Rebalancer Team",
    description="Lot-quantized portfolio rebalancing engine and service",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={
        "rebalance_calculator": ["py.typed"],
        "broker_connector_base": ["py.typed"],
    },
    install_requires=[
        "pydantic==2.11.7",
        "aiohttp==3.12.15",
        "PyYAML==6.0.2",
        "APScheduler>=3.10,<4",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "lot-rebalancer=rebalance_service.main:cli",
        ],
    },
    python_requires=">=3.11",
)
