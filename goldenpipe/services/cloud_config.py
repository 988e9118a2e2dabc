"""Provisioning payloads for builder VMs.

Linux builders get a cloud-init document, Windows builders an unattend XML
answer file. Both are returned base64-encoded, ready to be embedded in the
VM definition. Output is a pure function of the request.
"""

import base64
import textwrap
from dataclasses import dataclass, field

from goldenpipe.schemas import CreateImageRequest, ImageCustomizations


BASELINE_PACKAGES = ("curl", "wget", "git", "vim", "htop", "cloud-utils")
SUDO_RULE = "ALL=(ALL) NOPASSWD:ALL"
READY_MARKER = "/tmp/golden-image-ready"

PREPARE_SCRIPT = textwrap.dedent(
    """\
    #!/bin/bash
    set -e

    echo "Starting golden image preparation..."

    # Update package lists
    apt-get update

    # Install additional tools for image preparation
    apt-get install -y qemu-utils cloud-guest-utils

    # Clean package cache
    apt-get clean
    apt-get autoremove -y

    # Clear logs
    find /var/log -type f -name "*.log" -exec truncate -s 0 {} \\;
    find /var/log -type f -name "*.1" -delete
    find /var/log -type f -name "*.gz" -delete

    # Clear temporary files
    rm -rf /tmp/*
    rm -rf /var/tmp/*

    # Clear bash history
    history -c
    rm -f /root/.bash_history
    rm -f /home/*/.bash_history

    # Clear cloud-init data
    cloud-init clean --logs

    # Clear machine ID
    rm -f /etc/machine-id
    rm -f /var/lib/dbus/machine-id

    # Clear network configuration
    rm -f /etc/netplan/*.yaml
    rm -f /etc/network/interfaces.d/*

    # Clear SSH host keys
    rm -f /etc/ssh/ssh_host_*

    # Clear user data
    rm -rf /var/lib/cloud/instances/*

    # Clear systemd journal
    journalctl --vacuum-time=1s

    # Create new machine ID
    systemd-machine-id-setup

    echo "Golden image preparation completed successfully!"
    echo "System is ready for imaging."

    # Signal completion
    touch /tmp/golden-image-ready
    """
)

SANITIZE_RUNCMD = (
    textwrap.dedent(
        """\
        # Wait for system to be ready
        sleep 30

        # Create golden image preparation script
        cat > /tmp/prepare-golden-image.sh << 'EOF'
        """
    )
    + PREPARE_SCRIPT
    + textwrap.dedent(
        """\
        EOF

        chmod +x /tmp/prepare-golden-image.sh

        # Run the preparation script
        /tmp/prepare-golden-image.sh

        # Power off after completion
        poweroff
        """
    )
)

NETWORK_DATA = textwrap.dedent(
    """\
    version: 2
    ethernets:
      eth0:
        dhcp4: true
        dhcp6: false
    """
)


@dataclass
class CloudConfigSection:
    key: str
    comment: str | None = None
    lines: list[str] = field(default_factory=list)

    def add_item(self, value: str) -> None:
        self.lines.append(f"  - {value}")

    def add_field(self, name: str, value: str) -> None:
        self.lines.append(f"    {name}: {value}")

    def add_literal_item(self, text: str) -> None:
        self.lines.append("  - |")
        self.lines.extend(textwrap.indent(text, "    ").rstrip("\n").split("\n"))

    def render(self) -> str:
        out = "\n"
        if self.comment:
            out += f"# {self.comment}\n"
        out += f"{self.key}:\n"
        return out + "".join(f"{line}\n" for line in self.lines)


@dataclass
class CloudConfigDocument:
    """Ordered cloud-init document.

    Sections are appended, never merged: two sections with the same key are
    both emitted. Consumers that reject or collapse duplicate top-level keys
    will only see one of them.
    """

    directives: list[tuple[str, str]] = field(default_factory=list)
    sections: list[CloudConfigSection] = field(default_factory=list)

    def section(self, key: str, comment: str | None = None) -> CloudConfigSection:
        sec = CloudConfigSection(key=key, comment=comment)
        self.sections.append(sec)
        return sec

    def render(self) -> str:
        out = "#cloud-config\n"
        out += "".join(f"{key}: {value}\n" for key, value in self.directives)
        return out + "".join(sec.render() for sec in self.sections)


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def build_linux_document(req: CreateImageRequest) -> CloudConfigDocument:
    custom = req.customizations or ImageCustomizations()
    doc = CloudConfigDocument(
        directives=[("package_update", "true"), ("package_upgrade", "true")]
    )

    baseline = doc.section("packages", "Install packages")
    for pkg in BASELINE_PACKAGES:
        baseline.add_item(pkg)

    if custom.packages:
        extra = doc.section("packages", "Custom packages")
        for pkg in custom.packages:
            extra.add_item(pkg)

    if custom.users:
        users = doc.section("users", "Users")
        for user in custom.users:
            users.add_item(f"name: {user.name}")
            if user.password:
                users.add_field("passwd", user.password)
            if user.groups:
                users.add_field("groups", ",".join(user.groups))
            if user.sudo:
                users.add_field("sudo", SUDO_RULE)

    if custom.ssh_keys:
        keys = doc.section("ssh_authorized_keys", "SSH keys")
        for key in custom.ssh_keys:
            keys.add_item(key)

    if custom.files:
        files = doc.section("write_files", "Custom files")
        for path, content in custom.files.items():
            files.add_item(f"path: {path}")
            files.add_field("content", "|")
            files.lines.extend(f"      {line}" for line in content.split("\n"))

    if custom.scripts:
        scripts = doc.section("runcmd", "Custom scripts")
        for script in custom.scripts:
            scripts.add_item(script)

    doc.section("runcmd", "Golden image creation script").add_literal_item(
        SANITIZE_RUNCMD
    )
    return doc


def render_linux_user_data(req: CreateImageRequest) -> str:
    return build_linux_document(req).render()


def render_network_data() -> str:
    return NETWORK_DATA


def generate_linux_config(req: CreateImageRequest) -> tuple[str, str]:
    """Return ``(user_data_b64, network_data_b64)`` for a Linux builder."""
    return _b64(render_linux_user_data(req)), _b64(render_network_data())


_WPE_COMPONENT_ATTRS = (
    'processorArchitecture="amd64" publicKeyToken="31bf3856ad364e35" '
    'language="neutral" versionScope="nonSxS" '
    'xmlns:wcm="http://schemas.microsoft.com/WMIConfig/2002/State" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"'
)

UNATTEND_TEMPLATE = f"""<?xml version="1.0" encoding="utf-8"?>
<unattend xmlns="urn:schemas-microsoft-com:unattend">
    <settings pass="windowsPE">
        <component name="Microsoft-Windows-International-Core-WinPE" {_WPE_COMPONENT_ATTRS}>
            <SetupUILanguage>
                <UILanguage>en-US</UILanguage>
            </SetupUILanguage>
            <InputLocale>en-US</InputLocale>
            <UserLocale>en-US</UserLocale>
            <UILanguage>en-US</UILanguage>
            <SystemLocale>en-US</SystemLocale>
        </component>
        <component name="Microsoft-Windows-Setup" {_WPE_COMPONENT_ATTRS}>
            <DiskConfiguration>
                <Disk wcm:action="add">
                    <DiskID>0</DiskID>
                    <WillWipeDisk>true</WillWipeDisk>
                    <CreatePartitions>
                        <CreatePartition wcm:action="add">
                            <Order>1</Order>
                            <Type>Primary</Type>
                            <Size>500</Size>
                        </CreatePartition>
                        <CreatePartition wcm:action="add">
                            <Order>2</Order>
                            <Type>Primary</Type>
                            <Extend>true</Extend>
                        </CreatePartition>
                    </CreatePartitions>
                    <ModifyPartitions>
                        <ModifyPartition wcm:action="add">
                            <Order>1</Order>
                            <PartitionID>1</PartitionID>
                            <Label>System Reserved</Label>
                            <Format>NTFS</Format>
                        </ModifyPartition>
                        <ModifyPartition wcm:action="add">
                            <Order>2</Order>
                            <PartitionID>2</PartitionID>
                            <Label>Windows</Label>
                            <Letter>C</Letter>
                            <Format>NTFS</Format>
                        </ModifyPartition>
                    </ModifyPartitions>
                </Disk>
            </DiskConfiguration>
            <ImageInstall>
                <OSImage>
                    <InstallFrom>
                        <MetaData wcm:action="add">
                            <Key>/IMAGE/NAME</Key>
                            <Value>Windows Server 2022 SERVERSTANDARD</Value>
                        </MetaData>
                    </InstallFrom>
                    <InstallTo>
                        <DiskID>0</DiskID>
                        <PartitionID>2</PartitionID>
                    </InstallTo>
                </OSImage>
            </ImageInstall>
            <UserData>
                <AcceptEula>true</AcceptEula>
                <FullName>Administrator</FullName>
                <Organization>GoldenPipe</Organization>
            </UserData>
        </component>
    </settings>
    <settings pass="specialize">
        <component name="Microsoft-Windows-Shell-Setup" {_WPE_COMPONENT_ATTRS}>
            <ComputerName>GOLDEN-IMAGE</ComputerName>
            <RegisteredOwner>GoldenPipe</RegisteredOwner>
            <RegisteredOrganization>GoldenPipe</RegisteredOrganization>
        </component>
        <component name="Microsoft-Windows-Deployment" {_WPE_COMPONENT_ATTRS}>
            <RunSynchronous>
                <RunSynchronousCommand wcm:action="add">
                    <Order>1</Order>
                    <Path>powershell -Command "Set-ExecutionPolicy -ExecutionPolicy RemoteSigned -Force"</Path>
                </RunSynchronousCommand>
                <RunSynchronousCommand wcm:action="add">
                    <Order>2</Order>
                    <Path>powershell -Command "Enable-WindowsOptionalFeature -Online -FeatureName Microsoft-Hyper-V-All -All"</Path>
                </RunSynchronousCommand>
            </RunSynchronous>
        </component>
    </settings>
    <settings pass="oobeSystem">
        <component name="Microsoft-Windows-Shell-Setup" {_WPE_COMPONENT_ATTRS}>
            <OOBE>
                <HideEULAPage>true</HideEULAPage>
                <HideOEMRegistrationScreen>true</HideOEMRegistrationScreen>
                <HideOnlineAccountScreens>true</HideOnlineAccountScreens>
                <HideWirelessSetupInOOBE>true</HideWirelessSetupInOOBE>
                <NetworkLocation>Work</NetworkLocation>
                <SkipUserOOBE>true</SkipUserOOBE>
                <SkipMachineOOBE>true</SkipMachineOOBE>
            </OOBE>
            <UserAccounts>
                <AdministratorPassword>
                    <Value>GoldenPipe123!</Value>
                    <PlainText>true</PlainText>
                </AdministratorPassword>
            </UserAccounts>
            <AutoLogon>
                <Enabled>true</Enabled>
                <Username>Administrator</Username>
                <Password>
                    <Value>GoldenPipe123!</Value>
                    <PlainText>true</PlainText>
                </Password>
                <LogonCount>1</LogonCount>
            </AutoLogon>
        </component>
    </settings>
    <settings pass="offlineServicing">
        <component name="Microsoft-Windows-LUA-Settings" {_WPE_COMPONENT_ATTRS}>
            <EnableLUA>false</EnableLUA>
        </component>
    </settings>
</unattend>"""

# Orders 1 and 2 belong to the built-in commands above.
FIRST_CUSTOM_ORDER = 3
RUN_SYNCHRONOUS_CLOSE = "</RunSynchronous>"

_RUN_COMMAND = """
                <RunSynchronousCommand wcm:action="add">
                    <Order>{order}</Order>
                    <Path>powershell -Command "{script}"</Path>
                </RunSynchronousCommand>"""


def render_windows_unattend(req: CreateImageRequest) -> str:
    scripts = req.customizations.scripts if req.customizations else []
    if not scripts:
        return UNATTEND_TEMPLATE
    # Script text is inserted verbatim, quotes and markup included.
    commands = "".join(
        _RUN_COMMAND.format(order=order, script=script)
        for order, script in enumerate(scripts, start=FIRST_CUSTOM_ORDER)
    )
    return UNATTEND_TEMPLATE.replace(
        RUN_SYNCHRONOUS_CLOSE,
        commands + "\n            " + RUN_SYNCHRONOUS_CLOSE,
        1,
    )


def generate_windows_config(req: CreateImageRequest) -> str:
    return _b64(render_windows_unattend(req))
