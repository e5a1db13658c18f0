from calendar_bot.main import main


if __name__ == "__main__":
    main()
