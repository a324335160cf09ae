#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

逐项询问任务引擎的配置并写入 .env 文件。
"""
import os

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "Database URL", "sqlite:///data/payments.db", False),

    # === 调度 ===
    ("TIMEZONE", "Business timezone of the job schedules", "Asia/Kolkata", False),

    # === 日志 ===
    ("LOG_LEVEL", "Log level", "INFO", False),
    ("LOG_FILE", "Log file (leave empty to log to the console only)", "", False),

    # === SMTP ===
    ("SMTP_HOST", "SMTP server (leave empty to only log emails)", "", False),
    ("SMTP_PORT", "SMTP port", "587", False),
    ("SMTP_USERNAME", "SMTP username", "", False),
    ("SMTP_PASSWORD", "SMTP password", "", False),

    # === 邮件 ===
    ("EMAIL_FROM", "Sender address of customer emails", "payments@localhost", False),

    # === 告警 ===
    ("ALERT_EMAIL", "Recipient of job health alerts (optional)", "", False),

    # === 支付 ===
    ("CURRENCY_SYMBOL", "Currency symbol used in emails", "₹", False),
]

SECTION_NAMES = {
    "DATABASE": "# === Database ===",
    "TIMEZONE": "# === Scheduling ===",
    "LOG": "# === Logging ===",
    "SMTP": "# === Email (SMTP) ===",
    "EMAIL": "# === Email (SMTP) ===",
    "ALERT": "# === Health alerts ===",
    "CURRENCY": "# === Payments ===",
}


def main():
    print()
    print("=" * 60)
    print("  Rent payment job engine setup")
    print("  Generates the .env configuration file")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"An .env file already exists: {ENV_FILE}")
        choice = input("Overwrite it? (y/N): ").strip().lower()
        if choice != "y":
            print("Cancelled.")
            return
        print()

    env_lines = [
        "# Rent payment job engine configuration",
        "# Generated by scripts/setup_env.py",
    ]
    current_header = None

    for key, desc, default, required in CONFIG_ITEMS:
        header = SECTION_NAMES.get(key.split("_")[0], f"# === {key.split('_')[0]} ===")
        # 根据前缀分组显示
        if header != current_header:
            current_header = header
            env_lines.append("")
            env_lines.append(header)

        req_tag = " [required]" if required else ""
        default_hint = f" (default: {default})" if default else ""
        print(f"{desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  {key} is required.")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  Configuration written to {ENV_FILE}")
    print()
    print("  Initialize the database:")
    print("    python scripts/init_db.py")
    print()
    print("  Start the job engine:")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
