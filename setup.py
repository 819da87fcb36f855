from setuptools import setup, find_packages

setup(
    name="agentvault",
    version="0.1.0",
    description="Zero-knowledge credentials and a verify-then-act secret vault for AI agents",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"agentvault": ["migrations/*.sql"]},
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.0",
        "uvicorn>=0.27",
        "httpx>=0.27",
        "asyncpg>=0.29",
        "aiosqlite>=0.20",
        "cryptography>=42.0",
        "pynacl>=1.5.0",
        "slowapi>=0.1.9",
        "python-json-logger>=3.1",
    ],
    extras_require={"dev": ["pytest>=7.0", "pytest-asyncio>=0.23"]},
    entry_points={"console_scripts": [
        "agentvault=agentvault.cli:run",
        "agentvault-api=agentvault.api:main",
        "agentvault-mcp=agentvault.mcp_server:main",
    ]},
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security :: Cryptography",
        "Framework :: FastAPI",
        "Programming Language :: Python :: 3",
    ],
    keywords="agent credentials zero-knowledge vault midnight",
)
