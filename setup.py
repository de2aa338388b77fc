from setuptools import setup, find_packages

setup(
    name="eventagg-kit",
    version="0.1.0",
    packages=find_packages(),
    install_requires=[
        "httpx",
        "pydantic>=2",
        "aiohttp",
        "pymongo>=4.9",
        "resend",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
        ]
    },
    entry_points={
        "console_scripts": [
            "eventagg-scheduler=eventagg_kit.ekit_scheduler:main",
            "eventagg-http=eventagg_kit.ekit_http_app:main",
        ],
    },
    author="Event Aggregator Team",
    author_email="",
    description="Facebook page event aggregator: token lifecycle, event sync, webhooks",
    long_description="Keeps Facebook page access tokens alive in Vault, syncs page events into MongoDB, ingests webhooks and serves the sync, token and OAuth endpoints",
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
