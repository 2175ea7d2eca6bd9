from setuptools import find_packages, setup

package_name = "submap_server"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    data_files=[
        ("share/" + package_name + "/config", ["config/submap_server.yaml"]),
    ],
    install_requires=["setuptools", "numpy", "scipy", "pydantic>=2", "pyyaml"],
    extras_require={"test": ["pytest"]},
    python_requires=">=3.9",
    zip_safe=True,
    description="Submap merging server - ordered multi-robot submap merging with global pose lookup",
    license="Apache-2.0",
    entry_points={
        "console_scripts": [
            "submap_server_node = submap_server.backend.server_node:main",
        ],
    },
)
