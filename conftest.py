pytest_plugins = ["fieldservice_testing.pytest_plugin"]
