"""
Cleanuparr, clean arr download queues and download clients, distribution metadata.
"""

import setuptools

with open("README.rst", "r", encoding="utf-8") as readme:
    LONG_DESCRIPTION = readme.read()

tests_require = ["requests-mock"]

setuptools.setup(
    name="cleanuparr",
    author="Ross Patterson",
    author_email="me@rpatterson.net",
    description=(
        "Remove stuck arr queue items and clean up seeding downloads according to "
        "rules"
    ),
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/x-rst",
    license="MIT",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Communications :: File Sharing",
        "Topic :: Utilities",
    ],
    python_requires=">=3.8",
    packages=setuptools.find_packages("src"),
    package_dir={"": "src"},
    package_data={"cleanuparr": ["home/.config/*.yml"]},
    include_package_data=True,
    use_scm_version=dict(
        write_to="src/cleanuparr/version.py",
        local_scheme="no-local-version",
        fallback_version="0.0.0",
    ),
    setup_requires=["setuptools_scm"],
    install_requires=[
        "PyYAML",
        "tenacity",
        "argcomplete",
        "arrapi",
        "transmission-rpc",
        "qbittorrent-api",
        "deluge-client",
        "requests",
    ],
    tests_require=tests_require,
    extras_require=dict(
        dev=tests_require
        + [
            "pytest",
            "coverage",
            "flake8",
            "flake8-black",
        ]
    ),
    entry_points=dict(console_scripts=["cleanuparr=cleanuparr:main"]),
)
