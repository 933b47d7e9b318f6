from setuptools import find_packages, setup


setup(
    name="guild-social-graph",
    version="0.1.0",
    description="Guild relationship graph engine: interaction recording, decay, classification and layout",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.3.0",
        "confluent-kafka>=2.0.0",
        "fastapi>=0.100.0",
        "prometheus-client>=0.17.0",
        "psycopg2-binary>=2.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "httpx>=0.24.0",
        ],
    },
)
