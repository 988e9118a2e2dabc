import base64

import yaml

from goldenpipe.schemas import CreateImageRequest, ImageCustomizations, UserConfig
from goldenpipe.services.cloud_config import (
    BASELINE_PACKAGES,
    SUDO_RULE,
    generate_linux_config,
    generate_windows_config,
    render_linux_user_data,
    render_network_data,
    render_windows_unattend,
)


def _request(os_type: str = "linux", **custom) -> CreateImageRequest:
    return CreateImageRequest(
        name="web01",
        os_type=os_type,
        base_image_url="https://images.example.com/base.qcow2",
        customizations=ImageCustomizations(**custom) if custom else None,
    )


def test_linux_user_data_is_deterministic():
    req = _request(packages=["nginx"], scripts=["echo hi"])
    assert render_linux_user_data(req) == render_linux_user_data(req)
    assert generate_linux_config(req) == generate_linux_config(req)


def test_linux_baseline_parses_as_yaml():
    text = render_linux_user_data(_request())
    assert text.startswith("#cloud-config\n")

    doc = yaml.safe_load(text)
    assert doc["package_update"] is True
    assert doc["package_upgrade"] is True
    assert doc["packages"] == list(BASELINE_PACKAGES)
    assert len(doc["runcmd"]) == 1
    script = doc["runcmd"][0]
    assert script.startswith("# Wait for system to be ready\nsleep 30\n")
    assert "cat > /tmp/prepare-golden-image.sh << 'EOF'" in script
    assert "touch /tmp/golden-image-ready" in script
    assert script.rstrip().endswith("poweroff")


def test_custom_packages_and_scripts_emit_second_sections():
    text = render_linux_user_data(
        _request(packages=["nginx", "postgresql"], scripts=["systemctl enable nginx"])
    )
    assert text.count("\npackages:\n") == 2
    assert text.count("\nruncmd:\n") == 2
    assert "# Custom packages\npackages:\n  - nginx\n  - postgresql\n" in text
    assert "# Custom scripts\nruncmd:\n  - systemctl enable nginx\n" in text
    # The sanitization block always comes last.
    assert text.index("# Custom scripts") < text.index("# Golden image creation script")


def test_users_ssh_keys_and_files():
    text = render_linux_user_data(
        _request(
            users=[
                UserConfig(name="ops", password="secret", groups=["adm", "docker"], sudo=True),
                UserConfig(name="guest"),
            ],
            ssh_keys=["ssh-ed25519 AAAA ops@example"],
            files={"/etc/motd": "hello\nworld"},
        )
    )
    assert (
        "users:\n"
        "  - name: ops\n"
        "    passwd: secret\n"
        "    groups: adm,docker\n"
        f"    sudo: {SUDO_RULE}\n"
        "  - name: guest\n"
    ) in text
    assert "ssh_authorized_keys:\n  - ssh-ed25519 AAAA ops@example\n" in text
    assert (
        "write_files:\n"
        "  - path: /etc/motd\n"
        "    content: |\n"
        "      hello\n"
        "      world\n"
    ) in text


def test_empty_customizations_render_like_none():
    assert render_linux_user_data(_request()) == render_linux_user_data(
        CreateImageRequest(
            name="web01",
            os_type="linux",
            base_image_url="https://images.example.com/base.qcow2",
            customizations=ImageCustomizations(),
        )
    )


def test_linux_config_is_base64():
    req = _request(packages=["nginx"])
    user_data, network_data = generate_linux_config(req)
    assert base64.b64decode(user_data).decode("utf-8") == render_linux_user_data(req)
    network = yaml.safe_load(base64.b64decode(network_data))
    assert network == yaml.safe_load(render_network_data())
    assert network["ethernets"]["eth0"]["dhcp4"] is True


def test_windows_without_scripts_has_builtin_commands_only():
    xml = render_windows_unattend(_request("windows"))
    assert xml.startswith('<?xml version="1.0" encoding="utf-8"?>')
    assert "<Order>1</Order>" in xml
    assert "<Order>2</Order>" in xml
    assert "<Order>3</Order>" not in xml
    assert xml.count("</RunSynchronous>") == 1


def test_windows_scripts_numbered_from_three_inside_run_synchronous():
    xml = render_windows_unattend(
        _request("windows", scripts=["Install-WindowsFeature Web-Server", "Restart-Computer"])
    )
    close = xml.index("</RunSynchronous>")
    first = xml.index('<Path>powershell -Command "Install-WindowsFeature Web-Server"</Path>')
    second = xml.index('<Path>powershell -Command "Restart-Computer"</Path>')
    assert xml.index("<Order>3</Order>") < first < xml.index("<Order>4</Order>") < second < close
    assert xml.index("<Order>2</Order>") < xml.index("<Order>3</Order>")


def test_windows_config_is_base64():
    req = _request("windows", scripts=["Get-Date"])
    decoded = base64.b64decode(generate_windows_config(req)).decode("utf-8")
    assert decoded == render_windows_unattend(req)
